"""
Account operations for the Auth service: registration, login, token
refresh, logout, profile management and admin user management.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional, TYPE_CHECKING

from shared.errors import (
    AuthenticationError,
    AuthorizationError,
    LockedError,
    NotFoundError,
    ValidationError,
)
from shared.logging import get_logger

from ..models.schemas import ChangePasswordRequest, RegisterRequest, UpdateProfileRequest
from ..models.user import RefreshTokenRecord, Role, User
from ..security.passwords import PasswordHasher
from ..security.tokens import IssuedRefreshToken, TokenService
from ..store.user_store import UserStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class AuthResult:
    """Tokens handed out by register/login."""

    user: User
    access_token: str
    refresh_token: IssuedRefreshToken


class AccountService:
    """Business rules for user accounts. HTTP concerns stay in main."""

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        *,
        max_login_attempts: int = 5,
        lockout_seconds: int = 2 * 3600,
        max_refresh_tokens: int = 5,
        bootstrap_admins: Iterable[str] = (),
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.hasher = hasher
        self.tokens = tokens
        self.max_login_attempts = max_login_attempts
        self.lockout = timedelta(seconds=lockout_seconds)
        self.max_refresh_tokens = max_refresh_tokens
        self.bootstrap_admins = frozenset(name.lower() for name in bootstrap_admins)
        self.metrics = metrics
        self.logger = get_logger("auth.accounts")

    def _count(self, metric_name: str, **labels: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    async def _issue_tokens(self, user: User) -> AuthResult:
        access_token = self.tokens.issue_access_token(user)
        refresh = self.tokens.issue_refresh_token(user)
        user = await self.store.add_refresh_token(
            user.id,
            RefreshTokenRecord(token=refresh.token, created_at=refresh.issued_at, expires_at=refresh.expires_at),
            max_tokens=self.max_refresh_tokens,
        )
        self._count("tokens_issued_total", token_type="access")
        self._count("tokens_issued_total", token_type="refresh")
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh)

    def _registration_role(self, request: RegisterRequest, actor: Optional[User]) -> Role:
        """Role for a new account. Only an administrator may hand out anything but ``user``."""
        if request.username in self.bootstrap_admins:
            return Role.ADMIN
        if request.role is Role.USER:
            return Role.USER
        if actor is not None and actor.role == Role.ADMIN:
            return request.role
        self.logger.warning("Requested role ignored", username=request.username, requested_role=request.role.value)
        return Role.USER

    async def register(self, request: RegisterRequest, actor: Optional[User] = None) -> AuthResult:
        """Create an account. ``actor`` is the signed-in caller, if any."""
        password_hash = await self.hasher.hash(request.password)
        user = await self.store.create(User(
            username=request.username,
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            password_hash=password_hash,
            department=request.department,
            role=self._registration_role(request, actor),
        ))
        self.logger.info("User registered", user_id=user.id, username=user.username, role=user.role.value)
        if self.metrics:
            self.metrics.record_business_event("user_registered")
        return await self._issue_tokens(user)

    async def login(self, username: str, password: str) -> AuthResult:
        user = await self.store.get_by_username(username)
        if user is None or not user.is_active:
            self._count("login_attempts_total", outcome="invalid_credentials")
            raise AuthenticationError("Invalid credentials", details={"reason": "invalid_credentials"})

        if user.is_locked():
            self._count("login_attempts_total", outcome="locked")
            raise LockedError(
                "Account temporarily locked due to multiple failed login attempts",
                details={"lock_until": user.lock_until.isoformat() if user.lock_until else None},
            )

        if not await self.hasher.verify(password, user.password_hash):
            user = await self.store.register_failed_login(
                user.id,
                max_attempts=self.max_login_attempts,
                lockout=self.lockout,
            )
            self._count("login_attempts_total", outcome="invalid_credentials")
            self.logger.warning("Failed login", user_id=user.id, attempts=user.login_attempts)
            raise AuthenticationError("Invalid credentials", details={"reason": "invalid_credentials"})

        user = await self.store.record_successful_login(user.id)
        self._count("login_attempts_total", outcome="success")
        self.logger.info("User logged in", user_id=user.id, username=user.username)
        return await self._issue_tokens(user)

    async def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """Exchange a live refresh token for a new access token."""
        if not refresh_token:
            raise AuthenticationError("Refresh token required", details={"reason": "refresh_token_missing"})

        claims = self.tokens.decode_refresh_token(refresh_token)
        user = await self.store.get_by_id(claims["sub"])
        if (user is None or not user.is_active
                or not await self.store.has_refresh_token(user.id, refresh_token)):
            raise AuthenticationError(
                "Invalid or expired refresh token",
                details={"reason": "refresh_token_invalid"},
            )

        self._count("tokens_issued_total", token_type="access")
        return {
            "access_token": self.tokens.issue_access_token(user),
            "token_type": "Bearer",
            "expires_in": self.tokens.access_ttl_seconds,
        }

    async def authenticate(self, token: str) -> User:
        """Resolve a bearer access token to an active, unlocked user."""
        claims = self.tokens.decode_access_token(token)
        user = await self.store.get_by_id(claims["sub"])
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive", details={"reason": "user_inactive"})
        if user.is_locked():
            raise LockedError("Account temporarily locked")
        return user

    async def logout(self, user: User, refresh_token: Optional[str]) -> None:
        if refresh_token:
            await self.store.revoke_refresh_token(user.id, refresh_token)
        self.logger.info("User logged out", user_id=user.id)

    async def logout_all(self, user: User) -> int:
        revoked = await self.store.revoke_all_refresh_tokens(user.id)
        self.logger.info("User logged out of all devices", user_id=user.id, revoked=revoked)
        return revoked

    async def update_profile(self, user: User, request: UpdateProfileRequest) -> User:
        changes: Dict[str, Any] = {}
        if request.email and request.email != user.email:
            changes["email"] = request.email
            changes["is_email_verified"] = False
        if request.first_name:
            changes["first_name"] = request.first_name
        if request.last_name:
            changes["last_name"] = request.last_name
        if not changes:
            return user

        updated = await self.store.update(user.id, **changes)
        self.logger.info("Profile updated", user_id=user.id, fields=sorted(changes))
        return updated

    async def change_password(self, user: User, request: ChangePasswordRequest) -> None:
        if not await self.hasher.verify(request.current_password, user.password_hash):
            raise ValidationError("Current password is incorrect", details={"field": "current_password"})
        if await self.hasher.verify(request.new_password, user.password_hash):
            raise ValidationError(
                "New password must differ from the current one",
                details={"field": "new_password"},
            )

        password_hash = await self.hasher.hash(request.new_password)
        await self.store.update(user.id, password_hash=password_hash)
        await self.store.revoke_all_refresh_tokens(user.id)
        self.logger.info("Password changed", user_id=user.id)

    async def deactivate_account(self, user: User) -> None:
        await self.store.update(user.id, is_active=False)
        await self.store.revoke_all_refresh_tokens(user.id)
        self.logger.info("Account deactivated", user_id=user.id)

    # Admin operations

    @staticmethod
    def require_admin(user: User) -> None:
        if user.role != Role.ADMIN:
            raise AuthorizationError("Administrator role required", details={"required_role": Role.ADMIN.value})

    async def list_users(self, *, page: int = 1, limit: int = 10, role: Optional[Role] = None,
                         is_active: Optional[bool] = None, search: Optional[str] = None) -> Dict[str, Any]:
        users, total = await self.store.list_users(
            role=role,
            is_active=is_active,
            search=search,
            page=page,
            limit=limit,
        )
        return {
            "users": [user.to_public() for user in users],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def get_user(self, user_id: str) -> User:
        user = await self.store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found", details={"user_id": user_id})
        return user

    async def update_role(self, actor: User, user_id: str, role: Role) -> User:
        target = await self.get_user(user_id)
        if target.id == actor.id and role != Role.ADMIN:
            raise ValidationError("You cannot remove your own administrator role")

        updated = await self.store.update(target.id, role=role)
        self.logger.info("Role updated", admin_id=actor.id, target_user_id=target.id, role=role.value)
        return updated

    async def update_status(self, actor: User, user_id: str, is_active: bool) -> User:
        target = await self.get_user(user_id)
        if target.id == actor.id and not is_active:
            raise ValidationError("You cannot deactivate your own account")

        updated = await self.store.update(target.id, is_active=is_active)
        if not is_active:
            await self.store.revoke_all_refresh_tokens(target.id)
        self.logger.info(
            "User status updated",
            admin_id=actor.id,
            target_user_id=target.id,
            is_active=is_active,
        )
        return updated
