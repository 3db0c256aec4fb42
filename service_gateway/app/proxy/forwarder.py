"""
HTTP forwarding from the gateway to upstream services.
"""

from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING
from urllib.parse import urlsplit

import httpx
from fastapi import Request
from fastapi.responses import StreamingResponse

from shared.circuit_breaker import CircuitBreakerOpenException, CircuitBreakerRegistry, CircuitBreakerState
from shared.errors import BadGatewayError, GatewayTimeoutError
from shared.logging import get_logger
from shared.retry import RetryConfig, calculate_delay, is_retryable

from ..routing.routes import Route, raw_request_path

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "http2-settings",
})

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Set only by the auth gate; never trusted from the client.
IDENTITY_HEADERS = frozenset({"x-user-id", "x-user-email", "x-user-roles", "x-authenticated"})

SERVED_BY = "API-Gateway"

_CIRCUIT_STATE_VALUES = {
    CircuitBreakerState.CLOSED: 0,
    CircuitBreakerState.HALF_OPEN: 1,
    CircuitBreakerState.OPEN: 2,
}


def _connection_tokens(headers: Mapping[str, str]) -> set:
    """Header names listed in Connection are hop-by-hop for this message."""
    value = headers.get("connection", "")
    return {token.strip().lower() for token in value.split(",") if token.strip()}


def filter_response_headers(headers: httpx.Headers) -> List[Tuple[str, str]]:
    """Upstream response headers minus hop-by-hop ones, repeats preserved."""
    dropped = HOP_BY_HOP_HEADERS | _connection_tokens(headers)
    return [(name, value) for name, value in headers.multi_items() if name.lower() not in dropped]


class Forwarder:
    """Sends a matched request to its upstream and streams the answer back.

    Every attempt goes through the upstream's circuit breaker. Retryable
    failures are retried with exponential backoff while the breaker stays
    closed. Timeouts are answered with 504 and are not retried.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        registry: CircuitBreakerRegistry,
        *,
        metrics: Optional["MetricsCollector"] = None,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.registry = registry
        self.metrics = metrics
        self.retry_config = RetryConfig(base_delay=retry_base_delay, max_delay=retry_max_delay)
        self._sleep = sleep
        self.logger = get_logger("gateway.forwarder")

    def build_headers(self, route: Route, request: Request,
                      extra_headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Outbound header set for ``request``."""
        dropped = HOP_BY_HOP_HEADERS | IDENTITY_HEADERS | _connection_tokens(request.headers)
        dropped |= {"content-length", "host"}
        headers = {name: value for name, value in request.headers.items() if name.lower() not in dropped}

        original_host = request.headers.get("host", "")
        client_ip = request.client.host if request.client else "unknown"
        prior_forwarded = request.headers.get("x-forwarded-for")

        headers["host"] = urlsplit(route.target).netloc
        headers["x-forwarded-for"] = f"{prior_forwarded}, {client_ip}" if prior_forwarded else client_ip
        headers["x-forwarded-proto"] = request.url.scheme
        headers["x-forwarded-host"] = original_host
        headers["x-api-gateway"] = "true"

        request_id = getattr(request.state, "request_id", None)
        if request_id:
            headers["x-request-id"] = request_id

        for name, value in (extra_headers or {}).items():
            headers[name.lower()] = value
        return headers

    def _record_attempt(self, route: Route, outcome: str, duration: Optional[float] = None) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("upstream_requests_total", route=route.name, outcome=outcome)
        if duration is not None:
            self.metrics.observe_histogram("upstream_request_duration_seconds", duration, route=route.name)

    def _publish_state(self, route: Route, state: CircuitBreakerState) -> None:
        if self.metrics:
            self.metrics.set_gauge("circuit_breaker_state", _CIRCUIT_STATE_VALUES[state], upstream=route.target)

    async def _backoff(self, route: Route, attempt: int, reason: str) -> None:
        delay = calculate_delay(attempt, self.retry_config)
        self.logger.info(
            "Retrying upstream request",
            route=route.name,
            attempt=attempt,
            delay=round(delay, 3),
            reason=reason,
        )
        await self._sleep(delay)

    async def forward(self, route: Route, request: Request, body: bytes = b"",
                      extra_headers: Optional[Mapping[str, str]] = None) -> StreamingResponse:
        """Forward ``request`` along ``route`` and relay the upstream response."""
        breaker = self.registry.get(route.target)
        url = route.upstream_url(raw_request_path(request.scope), request.url.query)
        headers = self.build_headers(route, request, extra_headers)
        content = body if request.method.upper() in BODY_METHODS else None
        started = time.perf_counter()
        max_attempts = route.retries + 1
        attempt = 0

        while True:
            attempt += 1
            if not breaker.allow_request():
                self._record_attempt(route, "circuit_open")
                self._publish_state(route, breaker.state)
                self.logger.warning("Circuit open, rejecting request", route=route.name, upstream=route.target)
                raise CircuitBreakerOpenException(route.name)

            outbound = self.client.build_request(
                request.method,
                url,
                headers=headers,
                content=content,
                timeout=route.timeout,
            )
            attempt_started = time.perf_counter()
            try:
                response = await self.client.send(outbound, stream=True)
            except httpx.TimeoutException as exc:
                breaker.record_failure()
                self._publish_state(route, breaker.state)
                self._record_attempt(route, "timeout", time.perf_counter() - attempt_started)
                self.logger.warning("Upstream timed out", route=route.name, url=url, timeout=route.timeout)
                raise GatewayTimeoutError(details={"route": route.name}) from exc
            except httpx.TransportError as exc:
                breaker.record_failure()
                self._publish_state(route, breaker.state)
                self._record_attempt(route, "network_error", time.perf_counter() - attempt_started)
                self.logger.warning(
                    "Upstream unreachable",
                    route=route.name,
                    url=url,
                    attempt=attempt,
                    error=str(exc),
                )
                if attempt < max_attempts and breaker.state is CircuitBreakerState.CLOSED:
                    await self._backoff(route, attempt, type(exc).__name__)
                    continue
                raise BadGatewayError(details={"route": route.name}) from exc
            except BaseException:
                breaker.release_trial()
                raise

            duration = time.perf_counter() - attempt_started
            if response.status_code >= 500:
                breaker.record_failure()
                self._record_attempt(route, "server_error", duration)
            else:
                breaker.record_success()
                self._record_attempt(route, "success", duration)
            self._publish_state(route, breaker.state)

            if (is_retryable(response.status_code) and attempt < max_attempts
                    and breaker.state is CircuitBreakerState.CLOSED):
                await response.aclose()
                await self._backoff(route, attempt, f"status_{response.status_code}")
                continue

            return self._relay(route, request, response, started)

    def _relay(self, route: Route, request: Request, response: httpx.Response,
               started: float) -> StreamingResponse:
        relayed = StreamingResponse(self._stream(route, response), status_code=response.status_code)
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in filter_response_headers(response.headers)
        ]
        raw_headers.append((b"x-served-by", SERVED_BY.encode("latin-1")))
        elapsed_ms = round((time.perf_counter() - started) * 1000)
        raw_headers.append((b"x-response-time", f"{elapsed_ms}ms".encode("latin-1")))
        request_id = getattr(request.state, "request_id", None)
        if request_id and not response.headers.get("x-request-id"):
            raw_headers.append((b"x-request-id", request_id.encode("latin-1")))
        relayed.raw_headers = raw_headers
        return relayed

    async def _stream(self, route: Route, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            if response.is_stream_consumed:
                # Body was already read into memory by the transport.
                yield response.content
            else:
                async for chunk in response.aiter_raw():
                    yield chunk
        except httpx.HTTPError as e:
            # Status line is already sent; all that is left is to end the body.
            self.logger.warning("Upstream body interrupted", route=route.name, error=str(e))
        finally:
            await response.aclose()
