"""
User persistence for the Auth service.

``UserStore`` is the contract the account service relies on. Operations that
read-modify-write a record (login attempts, refresh token lists) are single
store calls so an implementation can make them atomic.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import ConflictError, NotFoundError
from shared.logging import get_logger

from ..models.user import RefreshTokenRecord, Role, User, utc_now

UPDATABLE_FIELDS = frozenset({
    "email",
    "first_name",
    "last_name",
    "password_hash",
    "role",
    "is_active",
    "is_email_verified",
})


class UserStore(ABC):
    """Storage contract for user records."""

    @abstractmethod
    async def create(self, user: User) -> User:
        """Insert a new user. Raises ConflictError on duplicate username/email."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def update(self, user_id: str, **changes: Any) -> User:
        """Apply field changes. Raises NotFoundError or ConflictError."""

    @abstractmethod
    async def register_failed_login(self, user_id: str, *, max_attempts: int,
                                    lockout: timedelta, now: Optional[datetime] = None) -> User:
        """Count a wrong password, locking the account at ``max_attempts``."""

    @abstractmethod
    async def record_successful_login(self, user_id: str, now: Optional[datetime] = None) -> User:
        """Reset attempts, stamp last_login and prune expired refresh tokens."""

    @abstractmethod
    async def add_refresh_token(self, user_id: str, record: RefreshTokenRecord, *, max_tokens: int) -> User:
        ...

    @abstractmethod
    async def has_refresh_token(self, user_id: str, token: str, now: Optional[datetime] = None) -> bool:
        ...

    @abstractmethod
    async def revoke_refresh_token(self, user_id: str, token: str) -> bool:
        ...

    @abstractmethod
    async def revoke_all_refresh_tokens(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def list_users(self, *, role: Optional[Role] = None, is_active: Optional[bool] = None,
                         search: Optional[str] = None, page: int = 1,
                         limit: int = 10) -> Tuple[List[User], int]:
        """Page through users, newest first. Returns (users, total)."""

    async def ping(self) -> bool:
        return True


class InMemoryUserStore(UserStore):
    """Process-local store. Records are copied in and out so callers never
    hold a reference to stored state."""

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._lock = asyncio.Lock()
        self.logger = get_logger("auth.user_store")

    def _find(self, predicate) -> Optional[User]:
        for user in self._users.values():
            if predicate(user):
                return user
        return None

    def _require(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    async def create(self, user: User) -> User:
        async with self._lock:
            username = user.username.lower()
            email = user.email.lower()
            if self._find(lambda u: u.username == username or u.email == email):
                raise ConflictError(
                    "User already exists",
                    details={"reason": "An account with this username or email already exists"},
                )
            stored = copy.deepcopy(user)
            stored.username = username
            stored.email = email
            self._users[stored.id] = stored
            self.logger.info("User created", user_id=stored.id, username=stored.username)
            return copy.deepcopy(stored)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user else None

    async def get_by_username(self, username: str) -> Optional[User]:
        needle = username.lower()
        async with self._lock:
            user = self._find(lambda u: u.username == needle)
            return copy.deepcopy(user) if user else None

    async def get_by_email(self, email: str) -> Optional[User]:
        needle = email.lower()
        async with self._lock:
            user = self._find(lambda u: u.email == needle)
            return copy.deepcopy(user) if user else None

    async def update(self, user_id: str, **changes: Any) -> User:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        async with self._lock:
            user = self._require(user_id)
            email = changes.get("email")
            if email is not None:
                email = email.lower()
                if self._find(lambda u: u.email == email and u.id != user_id):
                    raise ConflictError("Email already exists", details={"field": "email"})
                changes["email"] = email
            for name, value in changes.items():
                setattr(user, name, value)
            user.touch()
            return copy.deepcopy(user)

    async def register_failed_login(self, user_id: str, *, max_attempts: int,
                                    lockout: timedelta, now: Optional[datetime] = None) -> User:
        now = now or utc_now()
        async with self._lock:
            user = self._require(user_id)
            if user.lock_until is not None and user.lock_until <= now:
                # Previous lock ran out; this failure starts a new count.
                user.lock_until = None
                user.login_attempts = 1
            else:
                user.login_attempts += 1
                if user.login_attempts >= max_attempts and not user.is_locked(now):
                    user.lock_until = now + lockout
                    self.logger.warning(
                        "Account locked",
                        user_id=user.id,
                        attempts=user.login_attempts,
                        lock_until=user.lock_until.isoformat(),
                    )
            user.touch()
            return copy.deepcopy(user)

    async def record_successful_login(self, user_id: str, now: Optional[datetime] = None) -> User:
        now = now or utc_now()
        async with self._lock:
            user = self._require(user_id)
            user.login_attempts = 0
            user.lock_until = None
            user.last_login = now
            user.refresh_tokens = [record for record in user.refresh_tokens if not record.is_expired(now)]
            user.touch()
            return copy.deepcopy(user)

    async def add_refresh_token(self, user_id: str, record: RefreshTokenRecord, *, max_tokens: int) -> User:
        async with self._lock:
            user = self._require(user_id)
            user.refresh_tokens.append(record)
            if len(user.refresh_tokens) > max_tokens:
                user.refresh_tokens = user.refresh_tokens[-max_tokens:]
            user.touch()
            return copy.deepcopy(user)

    async def has_refresh_token(self, user_id: str, token: str, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            return any(record.token == token and not record.is_expired(now) for record in user.refresh_tokens)

    async def revoke_refresh_token(self, user_id: str, token: str) -> bool:
        async with self._lock:
            user = self._require(user_id)
            remaining = [record for record in user.refresh_tokens if record.token != token]
            revoked = len(remaining) != len(user.refresh_tokens)
            user.refresh_tokens = remaining
            user.touch()
            return revoked

    async def revoke_all_refresh_tokens(self, user_id: str) -> int:
        async with self._lock:
            user = self._require(user_id)
            revoked = len(user.refresh_tokens)
            user.refresh_tokens = []
            user.touch()
            return revoked

    async def list_users(self, *, role: Optional[Role] = None, is_active: Optional[bool] = None,
                         search: Optional[str] = None, page: int = 1,
                         limit: int = 10) -> Tuple[List[User], int]:
        needle = search.lower() if search else None
        async with self._lock:
            users = list(self._users.values())

        if role is not None:
            users = [u for u in users if u.role == role]
        if is_active is not None:
            users = [u for u in users if u.is_active == is_active]
        if needle:
            users = [
                u for u in users
                if needle in u.email or needle in u.first_name.lower() or needle in u.last_name.lower()
                or needle in u.username
            ]

        users.sort(key=lambda u: u.created_at, reverse=True)
        total = len(users)
        start = (page - 1) * limit
        return [copy.deepcopy(u) for u in users[start:start + limit]], total
