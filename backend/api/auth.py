"""
Auth API

Endpoints:
    POST /api/auth/register  → Create account, returns token
    POST /api/auth/login     → Returns token
    GET  /api/auth/me        → Current user
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core import User
from core.security import create_token, hash_password, verify_password
from db import get_storage
from .deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    name: str = ""


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/register")
def register(request: RegisterRequest):
    storage = get_storage()

    if storage.get_user_by_email(request.email):
        raise HTTPException(400, "User already exists")

    user = User(
        email=request.email,
        name=request.name,
        password_hash=hash_password(request.password),
    )
    storage.save_user(user)
    logger.info("Registered user %s", user.id)

    return {
        "message": "User registered successfully",
        "token": create_token(user.id),
        "user": user.public(),
    }


@router.post("/login")
def login(request: LoginRequest):
    user = get_storage().get_user_by_email(request.email)
    if not user:
        raise HTTPException(400, "User does not exist")

    if not verify_password(request.password, user.password_hash):
        raise HTTPException(400, "Invalid email/password")

    return {
        "message": "Login successful",
        "token": create_token(user.id),
        "user": user.public(),
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return user.public()
