"""
Request models for the Auth service.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, StrictBool, field_validator

from .user import Department, Role

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


def validate_password_strength(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
        raise ValueError("Password must contain an uppercase letter, a lowercase letter and a number")
    return value


def normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Must be a valid email address")
    return value


def normalize_name(value: str) -> str:
    value = value.strip()
    if not 2 <= len(value) <= 50:
        raise ValueError("Must be between 2 and 50 characters")
    return value


class RegisterRequest(BaseModel):
    """Request model for account registration."""
    username: str
    email: str
    password: str
    first_name: str
    last_name: str
    department: Department
    role: Role = Role.USER

    @field_validator("username")
    @classmethod
    def _username(cls, value: str) -> str:
        value = value.strip()
        if not 3 <= len(value) <= 20:
            raise ValueError("Username must be between 3 and 20 characters")
        if not USERNAME_PATTERN.match(value):
            raise ValueError("Username may only contain letters, numbers and underscores")
        return value.lower()

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator("password")
    @classmethod
    def _password(cls, value: str) -> str:
        return validate_password_strength(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def _names(cls, value: str) -> str:
        return normalize_name(value)


class LoginRequest(BaseModel):
    """Request model for login."""
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("username")
    @classmethod
    def _username(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("Username is required")
        return value


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    """Partial profile update; omitted fields are left alone."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _names(cls, value: Optional[str]) -> Optional[str]:
        return normalize_name(value) if value is not None else None

    @field_validator("email")
    @classmethod
    def _email(cls, value: Optional[str]) -> Optional[str]:
        return normalize_email(value) if value is not None else None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _new_password(cls, value: str) -> str:
        return validate_password_strength(value)


class RoleUpdateRequest(BaseModel):
    role: Role


class StatusUpdateRequest(BaseModel):
    is_active: StrictBool
