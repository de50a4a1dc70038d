"""
Security
Password hashing (bcrypt) and bearer tokens (HS256 JWT).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from config import get_settings

ALGORITHM = "HS256"


class AuthError(Exception):
    """Invalid, expired or missing credentials"""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def create_token(user_id: str, ttl: Optional[timedelta] = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + (ttl or timedelta(days=settings.token_ttl_days)),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> str:
    """Return the user id carried by token"""
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Invalid token") from e

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid token")
    return user_id
