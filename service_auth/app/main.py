"""
Auth service for the Portico Access Layer.
"""

from typing import Optional

from fastapi import Depends, Query, Request, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import AuthenticationError, LockedError, RateLimitError
from shared.rate_limit import FixedWindowRateLimiter, get_client_ip

from .models.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    RoleUpdateRequest,
    StatusUpdateRequest,
    UpdateProfileRequest,
)
from .models.user import Role, User
from .security.passwords import PasswordHasher
from .security.tokens import TokenService
from .services.account_service import AccountService, AuthResult
from .store.user_store import InMemoryUserStore, UserStore

REFRESH_COOKIE = "refreshToken"


def _bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, store: Optional[UserStore] = None):
        super().__init__("auth", 3001, config or get_config("auth", 3001))
        self.store = store or InMemoryUserStore()
        self.tokens = TokenService(
            self.config.jwt_secret,
            self.config.jwt_refresh_secret,
            algorithm=self.config.jwt_algorithm,
            access_ttl_seconds=self.config.access_token_ttl_seconds,
            refresh_ttl_seconds=self.config.refresh_token_ttl_seconds,
        )
        self.accounts = AccountService(
            self.store,
            PasswordHasher(self.config.bcrypt_rounds),
            self.tokens,
            max_login_attempts=self.config.max_login_attempts,
            lockout_seconds=self.config.lockout_seconds,
            max_refresh_tokens=self.config.max_refresh_tokens,
            bootstrap_admins=self.config.bootstrap_admin_usernames,
            metrics=self.metrics,
        )
        self.login_limiter = FixedWindowRateLimiter(
            self.config.redis_url,
            window_seconds=self.config.rate_limit_window_seconds,
            max_requests=self.config.login_rate_limit_max_requests,
            namespace="login_rate_limit",
            enabled=self.config.rate_limit_enabled,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.login_limiter.close()

        self._setup_auth_routes()
        self._setup_user_routes()

        self.app.state.auth_service = self

    async def _check_dependencies(self):
        return {"user_store": "ok" if await self.store.ping() else "error"}

    async def current_user(self, request: Request) -> User:
        """Resolve the bearer token on ``request`` to an active user."""
        token = _bearer_token(request)
        if token is None:
            raise AuthenticationError("Access token required", details={"reason": "token_missing"})
        return await self.accounts.authenticate(token)

    async def optional_user(self, request: Request) -> Optional[User]:
        """The signed-in caller, or ``None`` when the request carries no usable token."""
        if _bearer_token(request) is None:
            return None
        try:
            return await self.current_user(request)
        except (AuthenticationError, LockedError) as e:
            self.logger.info("Ignoring unusable bearer token", reason=e.details.get("reason"))
            return None

    async def admin_user(self, request: Request) -> User:
        user = await self.current_user(request)
        self.accounts.require_admin(user)
        return user

    def _set_refresh_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            REFRESH_COOKIE,
            token,
            max_age=self.config.refresh_token_ttl_seconds,
            httponly=True,
            secure=self.config.env.lower() == "production",
            samesite="strict",
        )

    def _auth_payload(self, message: str, result: AuthResult):
        return {
            "message": message,
            "user": result.user.to_public(),
            "access_token": result.access_token,
            "refresh_token": result.refresh_token.token,
            "token_type": "Bearer",
            "expires_in": self.tokens.access_ttl_seconds,
        }

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "auth",
                "message": "Portico Access Layer - Auth Service",
                "version": "1.0.0"
            }

        @self.app.post("/api/auth/register", status_code=201)
        async def register(payload: RegisterRequest, response: Response,
                           caller: Optional[User] = Depends(self.optional_user)):
            """Create an account and sign it in."""
            result = await self.accounts.register(payload, caller)
            self._set_refresh_cookie(response, result.refresh_token.token)
            return self._auth_payload("User registered successfully", result)

        @self.app.post("/api/auth/login")
        async def login(payload: LoginRequest, request: Request, response: Response):
            """Exchange credentials for tokens."""
            rate = await self.login_limiter.check(get_client_ip(request))
            if not rate.allowed:
                error = RateLimitError(
                    "Too many authentication attempts, try again later",
                    details={"limit": rate.limit, "reset_in_seconds": rate.reset_in_seconds},
                )
                return self.error_response(request, error, headers=rate.headers())

            result = await self.accounts.login(payload.username, payload.password)
            self._set_refresh_cookie(response, result.refresh_token.token)
            if self.login_limiter.enabled and rate.error is None:
                for name, value in rate.headers().items():
                    response.headers[name] = value
            return self._auth_payload("Login successful", result)

        @self.app.post("/api/auth/refresh")
        async def refresh(request: Request, payload: Optional[RefreshRequest] = None):
            """Issue a new access token from a refresh token."""
            token = request.cookies.get(REFRESH_COOKIE) or (payload.refresh_token if payload else None)
            refreshed = await self.accounts.refresh(token)
            return {"message": "Token refreshed successfully", **refreshed}

        @self.app.post("/api/auth/logout")
        async def logout(request: Request, response: Response,
                         payload: Optional[RefreshRequest] = None,
                         user: User = Depends(self.current_user)):
            token = request.cookies.get(REFRESH_COOKIE) or (payload.refresh_token if payload else None)
            await self.accounts.logout(user, token)
            response.delete_cookie(REFRESH_COOKIE)
            return {"message": "Logged out successfully"}

        @self.app.post("/api/auth/logout-all")
        async def logout_all(response: Response, user: User = Depends(self.current_user)):
            revoked = await self.accounts.logout_all(user)
            response.delete_cookie(REFRESH_COOKIE)
            return {"message": "Logged out of all devices", "revoked": revoked}

        @self.app.get("/api/auth/me")
        async def me(user: User = Depends(self.current_user)):
            return {"user": user.to_public()}

        @self.app.api_route("/api/auth/verify-token", methods=["GET", "POST"])
        async def verify_token(user: User = Depends(self.current_user)):
            """Token introspection used by the gateway."""
            return {"valid": True, "user": user.to_public()}

    def _setup_user_routes(self):
        """Set up profile and admin user management routes."""

        @self.app.get("/api/users/profile")
        async def get_profile(user: User = Depends(self.current_user)):
            return {"user": user.to_public()}

        @self.app.put("/api/users/profile")
        async def update_profile(payload: UpdateProfileRequest, user: User = Depends(self.current_user)):
            updated = await self.accounts.update_profile(user, payload)
            return {"message": "Profile updated successfully", "user": updated.to_public()}

        @self.app.put("/api/users/change-password")
        async def change_password(payload: ChangePasswordRequest, response: Response,
                                  user: User = Depends(self.current_user)):
            await self.accounts.change_password(user, payload)
            response.delete_cookie(REFRESH_COOKIE)
            return {"message": "Password updated successfully. Please sign in again."}

        @self.app.delete("/api/users/account")
        async def delete_account(response: Response, user: User = Depends(self.current_user)):
            await self.accounts.deactivate_account(user)
            response.delete_cookie(REFRESH_COOKIE)
            return {"message": "Account deleted successfully"}

        @self.app.get("/api/users")
        async def list_users(
            page: int = Query(1, ge=1),
            limit: int = Query(10, ge=1, le=100),
            role: Optional[Role] = None,
            is_active: Optional[bool] = None,
            search: Optional[str] = None,
            admin: User = Depends(self.admin_user),
        ):
            return await self.accounts.list_users(
                page=page,
                limit=limit,
                role=role,
                is_active=is_active,
                search=search,
            )

        @self.app.get("/api/users/{user_id}")
        async def get_user(user_id: str, admin: User = Depends(self.admin_user)):
            user = await self.accounts.get_user(user_id)
            return {"user": user.to_public()}

        @self.app.put("/api/users/{user_id}/role")
        async def update_role(user_id: str, payload: RoleUpdateRequest,
                              admin: User = Depends(self.admin_user)):
            updated = await self.accounts.update_role(admin, user_id, payload.role)
            return {"message": "Role updated successfully", "user": updated.to_public()}

        @self.app.put("/api/users/{user_id}/status")
        async def update_status(user_id: str, payload: StatusUpdateRequest,
                                admin: User = Depends(self.admin_user)):
            updated = await self.accounts.update_status(admin, user_id, payload.is_active)
            state = "activated" if payload.is_active else "deactivated"
            return {"message": f"User {state} successfully", "user": updated.to_public()}


def create_app(config: Optional[ServiceConfig] = None, store: Optional[UserStore] = None):
    """Create FastAPI application."""
    service = AuthService(config, store)
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
