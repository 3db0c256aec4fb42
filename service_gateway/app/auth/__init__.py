"""
Authentication helpers for the gateway: bearer token checks and the
verified-token cache.
"""

from .auth_gate import AuthContext, AuthGate, identity_headers
from .token_cache import CachedTokenEntry, TokenCache

__all__ = [
    "AuthContext",
    "AuthGate",
    "CachedTokenEntry",
    "TokenCache",
    "identity_headers",
]
