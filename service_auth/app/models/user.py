"""
User records owned by the Auth service.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Role(str, Enum):
    ADMIN = "admin"
    DIRECTOR = "director"
    USER = "user"


class Department(str, Enum):
    ADMINISTRATION = "administration"
    PURCHASING = "purchasing"
    IT = "it"
    MANAGEMENT = "management"
    HR = "hr"
    PRODUCTION = "production"
    SOFTGEL = "softgel"
    QUALITY = "quality"
    LABORATORY = "laboratory"
    MAINTENANCE = "maintenance"
    TECHNICAL_OFFICE = "technical_office"
    LOGISTICS = "logistics"


@dataclass
class RefreshTokenRecord:
    """A refresh token issued to one device."""

    token: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class User:
    """A registered account.

    Accounts are never removed; deactivation flips ``is_active``.
    """

    username: str
    email: str
    first_name: str
    last_name: str
    password_hash: str
    department: Department
    role: Role = Role.USER
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_active: bool = True
    is_email_verified: bool = False
    last_login: Optional[datetime] = None
    login_attempts: int = 0
    lock_until: Optional[datetime] = None
    refresh_tokens: List[RefreshTokenRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.lock_until is not None and self.lock_until > now

    def touch(self) -> None:
        self.updated_at = utc_now()

    def to_public(self) -> Dict[str, Any]:
        """Projection safe to return to clients."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "department": self.department.value,
            "role": self.role.value,
            "is_active": self.is_active,
            "is_email_verified": self.is_email_verified,
            "last_login": _iso(self.last_login),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
