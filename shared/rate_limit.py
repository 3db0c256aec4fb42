"""
Fixed-window rate limiter backed by Redis.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import redis.asyncio as redis
from fastapi import Request

from shared.logging import get_logger


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""
    allowed: bool
    limit: int
    current_count: int
    remaining: int
    reset_in_seconds: int
    error: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        """Standard rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_in_seconds)
        return headers


class FixedWindowRateLimiter:
    """Counts requests per client in Redis, one key per client and window.

    The limiter fails open: if Redis cannot be reached the request is allowed
    and the error is logged.
    """

    def __init__(self, redis_url: str, window_seconds: int, max_requests: int,
                 namespace: str = "rate_limit", enabled: bool = True):
        self.redis_url = redis_url
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.namespace = namespace
        self.enabled = enabled
        self.logger = get_logger(f"{namespace}.rate_limiter")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, client_id: str) -> str:
        """Generate rate limit key."""
        return f"{self.namespace}:{client_id}"

    def _allow_all(self, error: Optional[str] = None) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            limit=self.max_requests,
            current_count=0,
            remaining=self.max_requests,
            reset_in_seconds=self.window_seconds,
            error=error,
        )

    async def check(self, client_id: str) -> RateLimitResult:
        """Count one request for ``client_id`` and report whether it may proceed."""
        if not self.enabled:
            return self._allow_all()

        key = self._make_key(client_id)
        try:
            redis_client = await self._get_redis()
            current_count = int(await redis_client.incr(key))
            if current_count == 1:
                await redis_client.expire(key, self.window_seconds)
                ttl = self.window_seconds
            else:
                ttl = await redis_client.ttl(key)
                if ttl is None or ttl < 0:
                    # Key lost its expiry (e.g. crash between INCR and EXPIRE)
                    await redis_client.expire(key, self.window_seconds)
                    ttl = self.window_seconds
        except Exception as e:
            self.logger.error("Rate limit check error", error=str(e))
            return self._allow_all(error=str(e))

        allowed = current_count <= self.max_requests
        if not allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                current_count=current_count,
                limit=self.max_requests
            )

        return RateLimitResult(
            allowed=allowed,
            limit=self.max_requests,
            current_count=current_count,
            remaining=max(0, self.max_requests - current_count),
            reset_in_seconds=int(ttl),
        )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def get_client_ip(request: Request) -> str:
    """Extract the caller IP from standard headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"
