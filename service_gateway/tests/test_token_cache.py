"""
Unit tests for the verified token cache.
"""

import pytest

from service_gateway.app.auth.token_cache import TokenCache
from shared.metrics import MetricsCollector


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTokenCache:
    """Test cases for TokenCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return TokenCache(ttl_seconds=300, clock=clock)

    def test_fresh_entry_is_served(self, cache, clock):
        """Claims are returned while the entry is younger than the TTL."""
        cache.set("token-a", {"sub": "u1"})
        clock.now = 299.9

        assert cache.get("token-a") == {"sub": "u1"}

    def test_entry_expires_at_ttl(self, cache, clock):
        """An entry whose age reaches the TTL is never served."""
        cache.set("token-a", {"sub": "u1"})
        clock.now = 300.0

        assert cache.get("token-a") is None
        assert len(cache) == 0

    def test_sweep_evicts_only_expired(self, cache, clock):
        """Sweep removes expired entries and keeps fresh ones."""
        cache.set("old", {"sub": "u1"})
        clock.now = 200.0
        cache.set("new", {"sub": "u2"})
        clock.now = 350.0

        assert cache.sweep() == 1
        assert cache.get("new") == {"sub": "u2"}
        assert cache.get("old") is None

    def test_clear(self, cache):
        """Clearing drops every entry and reports how many."""
        cache.set("a", {"sub": "u1"})
        cache.set("b", {"sub": "u2"})

        assert cache.clear() == 2
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_stats_only_expose_token_prefix(self, cache, clock):
        """Statistics never reveal a whole token."""
        token = "x" * 40
        cache.set(token, {"sub": "user-9"})
        clock.now = 100.0

        stats = cache.stats()

        assert stats["size"] == 1
        assert stats["ttl_seconds"] == 300
        entry = stats["entries"][0]
        assert entry["token"] == "x" * 20 + "..."
        assert entry["user_id"] == "user-9"
        assert entry["age_seconds"] == 100.0
        assert entry["expires_in_seconds"] == 200.0

    def test_hits_and_misses_are_counted(self, clock):
        """Lookups are reported to the metrics collector."""
        metrics = MetricsCollector("gateway")
        cache = TokenCache(ttl_seconds=10, clock=clock, metrics=metrics)
        cache.set("a", {"sub": "u1"})

        cache.get("a")
        cache.get("missing")

        assert metrics.registry.get_sample_value(
            "cache_hits_total", {"cache_type": "token"}
        ) == 1.0
        assert metrics.registry.get_sample_value(
            "cache_misses_total", {"cache_type": "token"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_background_sweep_lifecycle(self, cache):
        """The sweep task starts and stops cleanly."""
        cache.start()
        assert cache._sweep_task is not None

        await cache.stop()
        assert cache._sweep_task is None
