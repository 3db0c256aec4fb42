"""
Adapters package for the Gateway Service.

HTTP clients for internal dependencies. Adapters share the gateway's
``httpx.AsyncClient`` and own a circuit breaker for their upstream.
"""

from .auth_client import AuthClient, IntrospectionOutcome, IntrospectionResult

__all__ = [
    "AuthClient",
    "IntrospectionOutcome",
    "IntrospectionResult",
]
