"""
Upstream health probing and aggregation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx

from shared.logging import get_logger

from ..routing.routes import Route

STATUS_UP = "up"
STATUS_DEGRADED = "degraded"
STATUS_DOWN = "down"

OVERALL_HEALTHY = "healthy"
OVERALL_DEGRADED = "degraded"
OVERALL_UNHEALTHY = "unhealthy"

OVERALL_HTTP_STATUS = {
    OVERALL_HEALTHY: 200,
    OVERALL_DEGRADED: 207,
    OVERALL_UNHEALTHY: 503,
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class ServiceHealth:
    """Result of probing one upstream."""

    name: str
    url: str
    path: str
    status: str
    response_time_ms: float
    status_code: Optional[int] = None
    error: Optional[str] = None
    details: Optional[Any] = None
    last_checked: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["details"] is None:
            data.pop("details")
        return data


def classify_status(status_code: int) -> str:
    if status_code < 400:
        return STATUS_UP
    if status_code < 500:
        return STATUS_DEGRADED
    return STATUS_DOWN


def aggregate_status(results: Iterable[ServiceHealth]) -> str:
    """Roll individual results up into one overall status."""
    statuses = [result.status for result in results]
    if not statuses or all(status == STATUS_UP for status in statuses):
        return OVERALL_HEALTHY
    if all(status == STATUS_DOWN for status in statuses):
        return OVERALL_UNHEALTHY
    return OVERALL_DEGRADED


class HealthChecker:
    """Checks upstream health endpoints on demand."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 5.0, detailed_timeout: float = 10.0):
        self.client = client
        self.timeout = timeout
        self.detailed_timeout = detailed_timeout
        self.logger = get_logger("gateway.health_checker")

    async def check(self, route: Route, detailed: bool = False) -> ServiceHealth:
        """Check ``route``'s health endpoint."""
        url = route.health_url
        started = time.perf_counter()
        timeout = self.detailed_timeout if detailed else self.timeout

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        try:
            response = await self.client.get(url, timeout=timeout)
        except httpx.TimeoutException:
            self.logger.warning("Health check timed out", service=route.name, url=url)
            return ServiceHealth(
                name=route.name,
                url=route.target,
                path=route.path_prefix,
                status=STATUS_DOWN,
                response_time_ms=elapsed_ms(),
                error=f"Timeout after {timeout}s",
                last_checked=_utc_now_iso(),
            )
        except httpx.HTTPError as e:
            self.logger.warning("Health check failed", service=route.name, url=url, error=str(e))
            return ServiceHealth(
                name=route.name,
                url=route.target,
                path=route.path_prefix,
                status=STATUS_DOWN,
                response_time_ms=elapsed_ms(),
                error=str(e) or type(e).__name__,
                last_checked=_utc_now_iso(),
            )

        status = classify_status(response.status_code)
        details = None
        if detailed:
            try:
                details = response.json()
            except ValueError:
                details = None

        return ServiceHealth(
            name=route.name,
            url=route.target,
            path=route.path_prefix,
            status=status,
            response_time_ms=elapsed_ms(),
            status_code=response.status_code,
            error=None if status == STATUS_UP else f"HTTP {response.status_code}",
            details=details,
            last_checked=_utc_now_iso(),
        )

    async def check_all(self, routes: Iterable[Route], detailed: bool = False) -> List[ServiceHealth]:
        """Check every route concurrently, preserving route order."""
        return list(await asyncio.gather(*(self.check(route, detailed) for route in routes)))

    async def overall(self, routes: Iterable[Route], detailed: bool = False) -> Dict[str, Any]:
        results = await self.check_all(routes, detailed)
        status = aggregate_status(results)
        return {
            "status": status,
            "http_status": OVERALL_HTTP_STATUS[status],
            "services": [result.to_dict() for result in results],
            "summary": {
                "total": len(results),
                "up": sum(1 for r in results if r.status == STATUS_UP),
                "degraded": sum(1 for r in results if r.status == STATUS_DEGRADED),
                "down": sum(1 for r in results if r.status == STATUS_DOWN),
            },
        }
