"""
Auth service client for Gateway.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.logging import get_logger

VERIFY_TOKEN_PATH = "/api/auth/verify-token"


class IntrospectionOutcome(Enum):
    """Verdict of the auth service on a token."""
    VALID = "valid"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


class AuthServiceError(Exception):
    """The auth service answered with a 5xx status."""

    def __init__(self, status_code: int):
        super().__init__(f"auth service returned {status_code}")
        self.status_code = status_code


@dataclass
class IntrospectionResult:
    outcome: IntrospectionOutcome
    user: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None


class AuthClient:
    """Client for communicating with Auth service.

    Introspection never raises: transport errors, timeouts, 5xx answers and
    an open circuit all come back as ``UNAVAILABLE`` so the caller can decide
    how strict to be.
    """

    def __init__(self, auth_service_url: str, client: httpx.AsyncClient,
                 circuit_breaker: CircuitBreaker, timeout: float = 5.0):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.client = client
        self.circuit_breaker = circuit_breaker
        self.timeout = timeout
        self.logger = get_logger("gateway.auth_client")

    async def _verify(self, token: str) -> httpx.Response:
        response = await self.client.get(
            f"{self.auth_service_url}{VERIFY_TOKEN_PATH}",
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.timeout,
        )
        if response.status_code >= 500:
            raise AuthServiceError(response.status_code)
        return response

    async def introspect(self, token: str) -> IntrospectionResult:
        """Ask the auth service whether ``token`` is still acceptable."""
        try:
            response = await self.circuit_breaker.call(self._verify, token)
        except CircuitBreakerOpenException:
            return IntrospectionResult(IntrospectionOutcome.UNAVAILABLE, reason="circuit_open")
        except AuthServiceError as e:
            self.logger.warning("Auth service introspection error", status_code=e.status_code)
            return IntrospectionResult(IntrospectionOutcome.UNAVAILABLE, reason=f"status_{e.status_code}")
        except httpx.HTTPError as e:
            self.logger.warning("Auth service introspection failed", error=str(e))
            return IntrospectionResult(IntrospectionOutcome.UNAVAILABLE, reason=type(e).__name__)

        if response.status_code in (401, 403, 423):
            return IntrospectionResult(IntrospectionOutcome.INVALID, reason=f"status_{response.status_code}")
        if response.status_code != 200:
            return IntrospectionResult(IntrospectionOutcome.UNAVAILABLE, reason=f"status_{response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            return IntrospectionResult(IntrospectionOutcome.UNAVAILABLE, reason="invalid_body")

        if isinstance(payload, dict) and payload.get("valid") is False:
            return IntrospectionResult(IntrospectionOutcome.INVALID, reason="rejected")

        user = payload.get("user") if isinstance(payload, dict) else None
        return IntrospectionResult(IntrospectionOutcome.VALID, user=user or {})
