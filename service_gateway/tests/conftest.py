"""
Shared fixtures for gateway tests.
"""

import time
from typing import Dict, Optional
from urllib.parse import unquote

import pytest
from fastapi import Request
from jose import jwt

from shared.config import get_config

JWT_SECRET = "gateway-test-secret"


@pytest.fixture
def gateway_config():
    """Factory for gateway configs with test-friendly defaults."""

    def _make(**overrides):
        settings = {
            "env": "test",
            "jwt_secret": JWT_SECRET,
            "rate_limit_enabled": False,
            "introspection_enabled": False,
            "retry_base_delay": 0.0,
            "auth_service_url": "http://auth:3001",
            "user_service_url": "http://auth:3001",
            "product_service_url": "http://products:3003",
            "order_service_url": "http://orders:3004",
            "notification_service_url": "http://notifications:6003",
        }
        settings.update(overrides)
        return get_config("gateway", 8000, **settings)

    return _make


@pytest.fixture
def make_token():
    """Factory for HS256 access tokens signed with the test secret."""

    def _make(sub: str = "user-1", role: str = "user", expires_in: int = 3600, **claims) -> str:
        now = int(time.time())
        payload = {
            "sub": sub,
            "userId": sub,
            "email": f"{sub}@example.com",
            "role": role,
            "roles": [role],
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(claims)
        return jwt.encode(payload, JWT_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def make_request():
    """Factory for bare Starlette requests."""

    def _make(method: str = "GET", path: str = "/", query: str = "",
              headers: Optional[Dict[str, str]] = None, client=("10.0.0.1", 5555)) -> Request:
        raw_headers = [(b"host", b"gateway.local")]
        for name, value in (headers or {}).items():
            raw_headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": unquote(path),
            "raw_path": path.encode("latin-1"),
            "root_path": "",
            "query_string": query.encode("latin-1"),
            "headers": raw_headers,
            "client": client,
            "server": ("gateway.local", 80),
        }
        return Request(scope)

    return _make
