"""
Unit tests for the fixed-window rate limiter.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import Request

from shared.rate_limit import FixedWindowRateLimiter, get_client_ip


def _request(headers=None, client=("10.0.0.9", 4000)):
    raw = [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "client": client})


class TestFixedWindowRateLimiter:
    """Test cases for FixedWindowRateLimiter."""

    @pytest.fixture
    def redis_client(self):
        client = AsyncMock()
        client.ttl.return_value = 500
        return client

    @pytest.fixture
    def limiter(self, redis_client):
        limiter = FixedWindowRateLimiter("redis://unused", window_seconds=900, max_requests=2, namespace="test")
        limiter._redis = redis_client
        return limiter

    @pytest.mark.asyncio
    async def test_first_request_starts_window(self, limiter, redis_client):
        redis_client.incr.return_value = 1

        result = await limiter.check("1.2.3.4")

        assert result.allowed is True
        assert result.remaining == 1
        assert result.reset_in_seconds == 900
        redis_client.incr.assert_awaited_once_with("test:1.2.3.4")
        redis_client.expire.assert_awaited_once_with("test:1.2.3.4", 900)

    @pytest.mark.asyncio
    async def test_over_limit_is_rejected(self, limiter, redis_client):
        redis_client.incr.return_value = 3

        result = await limiter.check("1.2.3.4")

        assert result.allowed is False
        assert result.remaining == 0
        assert result.reset_in_seconds == 500
        assert result.headers()["Retry-After"] == "500"

    @pytest.mark.asyncio
    async def test_lost_expiry_is_restored(self, limiter, redis_client):
        redis_client.incr.return_value = 2
        redis_client.ttl.return_value = -1

        result = await limiter.check("1.2.3.4")

        assert result.allowed is True
        assert result.reset_in_seconds == 900
        redis_client.expire.assert_awaited_once_with("test:1.2.3.4", 900)

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_errors(self, limiter, redis_client):
        redis_client.incr.side_effect = ConnectionError("redis down")

        result = await limiter.check("1.2.3.4")

        assert result.allowed is True
        assert result.error == "redis down"

    @pytest.mark.asyncio
    async def test_disabled_limiter_skips_redis(self, redis_client):
        limiter = FixedWindowRateLimiter("redis://unused", 60, 1, enabled=False)
        limiter._redis = redis_client

        result = await limiter.check("1.2.3.4")

        assert result.allowed is True
        redis_client.incr.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close(self, limiter, redis_client):
        await limiter.close()

        redis_client.aclose.assert_awaited_once()
        assert limiter._redis is None

    def test_allowed_headers(self):
        limiter = FixedWindowRateLimiter("redis://unused", 60, 10)
        headers = limiter._allow_all().headers()

        assert headers == {"X-RateLimit-Limit": "10", "X-RateLimit-Remaining": "10", "X-RateLimit-Reset": "60"}


class TestClientIp:
    """Test cases for get_client_ip."""

    def test_forwarded_for_wins(self):
        request = _request({"X-Forwarded-For": "8.8.8.8, 10.0.0.1", "X-Real-IP": "9.9.9.9"})

        assert get_client_ip(request) == "8.8.8.8"

    def test_real_ip(self):
        assert get_client_ip(_request({"X-Real-IP": "9.9.9.9"})) == "9.9.9.9"

    def test_socket_address(self):
        assert get_client_ip(_request()) == "10.0.0.9"

    def test_unknown(self):
        assert get_client_ip(_request(client=None)) == "unknown"
