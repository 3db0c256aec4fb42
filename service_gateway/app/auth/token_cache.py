"""
In-process cache of verified access tokens.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TOKEN_TTL = 300.0


@dataclass(frozen=True)
class CachedTokenEntry:
    """Decoded claims for a token and when they were cached."""

    claims: Dict[str, Any]
    cached_at: float

    def age(self, now: float) -> float:
        return now - self.cached_at


class TokenCache:
    """Maps raw bearer tokens to verified claims for a fixed TTL.

    Entries are dropped lazily on lookup and periodically by a background
    sweep. The sweep is best effort; lookups never serve an entry whose age
    has reached the TTL.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TOKEN_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("gateway.token_cache")
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[str, CachedTokenEntry] = {}
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def _record(self, metric_name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, cache_type="token")

    def get(self, token: str) -> Optional[Dict[str, Any]]:
        """Return cached claims for ``token`` while the entry is fresh."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(token)
            if entry is not None and entry.age(now) >= self.ttl_seconds:
                del self._entries[token]
                entry = None

        if entry is None:
            self._record("cache_misses_total")
            return None
        self._record("cache_hits_total")
        return entry.claims

    def set(self, token: str, claims: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[token] = CachedTokenEntry(claims=dict(claims), cached_at=self._clock())

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        self.logger.info("Token cache cleared", removed=removed)
        return removed

    def sweep(self) -> int:
        """Remove expired entries and return how many were evicted."""
        now = self._clock()
        with self._lock:
            expired = [token for token, entry in self._entries.items() if entry.age(now) >= self.ttl_seconds]
            for token in expired:
                del self._entries[token]
        if expired:
            self.logger.debug("Token cache sweep", evicted=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        """Cache statistics. Only token previews are exposed."""
        now = self._clock()
        with self._lock:
            items = list(self._entries.items())

        entries: List[Dict[str, Any]] = []
        for token, entry in items:
            entries.append({
                "token": f"{token[:20]}...",
                "user_id": entry.claims.get("sub") or entry.claims.get("userId"),
                "age_seconds": round(entry.age(now), 3),
                "expires_in_seconds": round(max(0.0, self.ttl_seconds - entry.age(now)), 3),
            })

        return {
            "size": len(entries),
            "ttl_seconds": self.ttl_seconds,
            "entries": entries,
        }

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ttl_seconds)
            try:
                self.sweep()
            except Exception as e:  # pragma: no cover - keep sweeping
                self.logger.error("Token cache sweep failed", error=str(e))

    def start(self) -> None:
        """Start the periodic sweep on the running loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
