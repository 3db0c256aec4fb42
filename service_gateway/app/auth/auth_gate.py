"""
Bearer token authentication for proxied routes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import Request
from jose import ExpiredSignatureError, JWTError, jwt

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger, set_user_context

from ..adapters.auth_client import AuthClient, IntrospectionOutcome
from ..routing.routes import Route
from .token_cache import TokenCache


@dataclass(frozen=True)
class AuthContext:
    """Identity established for a proxied request."""

    subject: Optional[str]
    email: Optional[str]
    roles: List[str]
    claims: Dict[str, Any]
    token: str
    cached: bool = False


def extract_bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def claim_roles(claims: Dict[str, Any]) -> List[str]:
    """Roles carried by a claim set, from ``roles`` and/or ``role``."""
    roles: List[str] = []
    raw_roles = claims.get("roles")
    if isinstance(raw_roles, str):
        roles.append(raw_roles)
    elif isinstance(raw_roles, (list, tuple)):
        roles.extend(str(role) for role in raw_roles)
    role = claims.get("role")
    if isinstance(role, str) and role not in roles:
        roles.append(role)
    return roles


def identity_headers(context: AuthContext) -> Dict[str, str]:
    """Headers describing the caller for the upstream."""
    headers = {
        "X-User-Roles": json.dumps(context.roles),
        "X-Authenticated": "true",
    }
    if context.subject:
        headers["X-User-Id"] = str(context.subject)
    if context.email:
        headers["X-User-Email"] = str(context.email)
    return headers


class AuthGate:
    """Validates bearer tokens locally, optionally confirms them with the
    auth service, and caches verified claims."""

    def __init__(
        self,
        secret: str,
        algorithm: str,
        cache: TokenCache,
        *,
        auth_client: Optional[AuthClient] = None,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.cache = cache
        self.auth_client = auth_client
        self.logger = get_logger("gateway.auth_gate")

    def verify_locally(self, token: str) -> Dict[str, Any]:
        """Verify signature and expiry with the shared secret."""
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token expired", details={"reason": "token_expired"}) from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid token", details={"reason": "token_invalid"}) from exc

    async def _introspect(self, token: str, claims: Dict[str, Any]) -> Dict[str, Any]:
        if self.auth_client is None:
            return claims

        result = await self.auth_client.introspect(token)
        if result.outcome is IntrospectionOutcome.INVALID:
            self.logger.warning("Token rejected by auth service", reason=result.reason)
            raise AuthenticationError(
                "Token rejected by auth service",
                details={"reason": "token_rejected"},
            )
        if result.outcome is IntrospectionOutcome.UNAVAILABLE:
            # Local verification already passed; keep serving on its claims.
            self.logger.warning("Auth service unavailable, using local claims", reason=result.reason)
            return claims

        merged = dict(claims)
        merged.update(result.user)
        return merged

    def _context(self, token: str, claims: Dict[str, Any], cached: bool) -> AuthContext:
        return AuthContext(
            subject=claims.get("sub") or claims.get("userId") or claims.get("id"),
            email=claims.get("email"),
            roles=claim_roles(claims),
            claims=claims,
            token=token,
            cached=cached,
        )

    def _authorize(self, context: AuthContext, route: Route) -> None:
        if route.roles and not set(route.roles) & set(context.roles):
            raise AuthorizationError(
                "Insufficient permissions",
                details={"required_roles": list(route.roles)},
            )

    async def authenticate(self, request: Request, route: Route) -> Optional[AuthContext]:
        """Establish the caller's identity for ``route``.

        Returns ``None`` for anonymous requests on routes that allow them.
        """
        token = extract_bearer_token(request)
        if token is None:
            if route.auth_required:
                raise AuthenticationError("Access token required", details={"reason": "token_missing"})
            return None

        claims = self.cache.get(token)
        if claims is not None:
            context = self._context(token, claims, cached=True)
            self._authorize(context, route)
        else:
            claims = self.verify_locally(token)
            claims = await self._introspect(token, claims)
            context = self._context(token, claims, cached=False)
            self._authorize(context, route)
            self.cache.set(token, claims)

        if context.subject:
            set_user_context(str(context.subject))
        return context
