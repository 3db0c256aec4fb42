"""
Unit tests for upstream health aggregation.
"""

import httpx
import pytest

from service_gateway.app.health.checker import (
    HealthChecker,
    ServiceHealth,
    aggregate_status,
    classify_status,
)
from service_gateway.app.routing.routes import Route


def _route(name: str, target: str) -> Route:
    return Route(name=name, path_prefix=f"/api/{name}", target=target)


def _result(status: str) -> ServiceHealth:
    return ServiceHealth(name="svc", url="http://svc", path="/svc", status=status, response_time_ms=1.0)


class TestAggregation:
    """Test cases for status rollup."""

    def test_classify_status(self):
        assert classify_status(200) == "up"
        assert classify_status(302) == "up"
        assert classify_status(404) == "degraded"
        assert classify_status(500) == "down"

    def test_all_up_is_healthy(self):
        assert aggregate_status([_result("up"), _result("up")]) == "healthy"

    def test_no_routes_is_healthy(self):
        assert aggregate_status([]) == "healthy"

    def test_all_down_is_unhealthy(self):
        assert aggregate_status([_result("down"), _result("down")]) == "unhealthy"

    def test_mixed_is_degraded(self):
        assert aggregate_status([_result("up"), _result("degraded")]) == "degraded"
        assert aggregate_status([_result("down"), _result("up")]) == "degraded"


class TestHealthChecker:
    """Test cases for HealthChecker."""

    def make_checker(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HealthChecker(client, timeout=1.0, detailed_timeout=2.0)

    @pytest.mark.asyncio
    async def test_one_failing_upstream_degrades_overall(self):
        """Three routes, one answering 500, roll up to degraded / 207."""
        statuses = {"a": 200, "b": 500, "c": 200}

        def handler(request):
            return httpx.Response(statuses[request.url.host], json={"status": "ok"})

        checker = self.make_checker(handler)
        routes = [_route(name, f"http://{name}") for name in ("a", "b", "c")]

        overall = await checker.overall(routes)

        assert overall["status"] == "degraded"
        assert overall["http_status"] == 207
        assert overall["summary"] == {"total": 3, "up": 2, "degraded": 0, "down": 1}
        assert [service["name"] for service in overall["services"]] == ["a", "b", "c"]
        assert overall["services"][1]["error"] == "HTTP 500"

    @pytest.mark.asyncio
    async def test_health_url_uses_health_path(self):
        """Checks go to target plus health path."""
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200)

        checker = self.make_checker(handler)
        await checker.check(Route(name="x", path_prefix="/x", target="http://x:1/", health_path="/status"))

        assert seen == ["http://x:1/status"]

    @pytest.mark.asyncio
    async def test_timeout_marks_down(self):
        """A check that times out is down with a timeout message."""

        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        result = await self.make_checker(handler).check(_route("slow", "http://slow"))

        assert result.status == "down"
        assert result.error == "Timeout after 1.0s"
        assert result.status_code is None

    @pytest.mark.asyncio
    async def test_unreachable_marks_down(self):
        """Connection errors are down."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        overall = await self.make_checker(handler).overall([_route("gone", "http://gone")])

        assert overall["status"] == "unhealthy"
        assert overall["http_status"] == 503

    @pytest.mark.asyncio
    async def test_detailed_check_includes_body(self):
        """Detailed checks embed the upstream health payload."""

        def handler(request):
            return httpx.Response(200, json={"status": "ok", "uptime_seconds": 12})

        result = await self.make_checker(handler).check(_route("a", "http://a"), detailed=True)

        assert result.details == {"status": "ok", "uptime_seconds": 12}
        assert "details" in result.to_dict()

    @pytest.mark.asyncio
    async def test_plain_check_omits_details(self):
        def handler(request):
            return httpx.Response(200, json={"status": "ok"})

        result = await self.make_checker(handler).check(_route("a", "http://a"))

        assert "details" not in result.to_dict()
        assert result.error is None
