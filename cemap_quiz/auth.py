"""Account helpers: password hashing and the request models for register/login."""
from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field
from werkzeug.security import check_password_hash, generate_password_hash

SESSION_COOKIE = "cemap_session"


class RegisterRequest(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=8)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


def public_user(user: dict) -> dict:
    """User record without the password hash."""
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "createdAt": user["created_at"],
    }
