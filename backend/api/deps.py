"""
Shared request dependencies.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core import User
from core.security import AuthError, decode_token
from db import get_storage

_bearer = HTTPBearer(auto_error=False)


def _resolve_user(token: Optional[str]) -> User:
    if not token:
        raise HTTPException(401, "Not authorized")

    try:
        user_id = decode_token(token)
    except AuthError as e:
        raise HTTPException(401, str(e))

    user = get_storage().get_user(user_id)
    if user is None:
        raise HTTPException(401, "Unauthorized")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer)
) -> User:
    """Resolve the bearer token to a stored user, else 401"""
    return _resolve_user(credentials.credentials if credentials else None)


def get_stream_user(
    token: Optional[str] = Query(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer)
) -> User:
    """Like get_current_user, but also accepts ?token= (EventSource cannot set headers)"""
    return _resolve_user(credentials.credentials if credentials else token)
