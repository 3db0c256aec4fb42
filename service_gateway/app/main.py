"""
API Gateway service for the Portico Access Layer.
"""

import os
import platform
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from fastapi import Request, WebSocket
from fastapi.responses import JSONResponse, Response

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreakerRegistry
from shared.config import ServiceConfig, get_config
from shared.errors import NotFoundError, PayloadTooLargeError, RateLimitError
from shared.rate_limit import FixedWindowRateLimiter, get_client_ip

from .adapters.auth_client import AuthClient
from .auth.auth_gate import AuthGate, identity_headers
from .auth.token_cache import TokenCache
from .health.checker import HealthChecker, OVERALL_HEALTHY
from .proxy.forwarder import Forwarder
from .proxy.ws_relay import WebSocketRelay
from .routing.routes import load_route_table, raw_request_path

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]
INTROSPECTION_CIRCUIT = "auth-introspection"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ws_connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        super().__init__("gateway", 8000, config or get_config("gateway", 8000))
        self.routes = load_route_table(self.config)
        self.http_client = httpx.AsyncClient(
            transport=transport,
            timeout=self.config.route_timeout_seconds,
            follow_redirects=False,
        )

        self.circuit_breakers = CircuitBreakerRegistry(
            failure_threshold=self.config.circuit_failure_threshold,
            recovery_timeout=self.config.circuit_reset_timeout,
        )
        self.token_cache = TokenCache(self.config.token_cache_ttl_seconds, metrics=self.metrics)

        auth_client = None
        if self.config.introspection_enabled:
            auth_client = AuthClient(
                self.config.auth_service_url,
                self.http_client,
                self.circuit_breakers.get(INTROSPECTION_CIRCUIT),
                timeout=self.config.introspection_timeout,
            )
        self.auth_gate = AuthGate(
            self.config.jwt_secret,
            self.config.jwt_algorithm,
            self.token_cache,
            auth_client=auth_client,
        )

        forwarder_options: Dict[str, Any] = {}
        if sleep is not None:
            forwarder_options["sleep"] = sleep
        self.forwarder = Forwarder(
            self.http_client,
            self.circuit_breakers,
            metrics=self.metrics,
            retry_base_delay=self.config.retry_base_delay,
            retry_max_delay=self.config.retry_max_delay,
            **forwarder_options,
        )
        if ws_connect is not None:
            self.ws_relay = WebSocketRelay(self.routes, connect=ws_connect)
        else:
            self.ws_relay = WebSocketRelay(self.routes)

        self.health_checker = HealthChecker(
            self.http_client,
            timeout=self.config.health_check_timeout,
            detailed_timeout=self.config.detailed_health_check_timeout,
        )
        self.rate_limiter = FixedWindowRateLimiter(
            self.config.redis_url,
            window_seconds=self.config.rate_limit_window_seconds,
            max_requests=self.config.rate_limit_max_requests,
            namespace="gateway_rate_limit",
            enabled=self.config.rate_limit_enabled,
        )

        @self.app.on_event("startup")
        async def _startup():
            self.token_cache.start()
            self.logger.info(
                "Gateway started",
                routes=[route.path_prefix for route in self.routes],
                introspection=self.config.introspection_enabled,
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.token_cache.stop()
            await self.http_client.aclose()
            await self.rate_limiter.close()

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _process_info(self) -> Dict[str, Any]:
        return {
            "pid": os.getpid(),
            "python_version": platform.python_version(),
            "environment": self.config.env,
        }

    async def _read_body(self, request: Request) -> bytes:
        """Buffer the request body, refusing chunked uploads over the limit."""
        limit = self.config.max_body_bytes
        chunks = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if size > limit:
                raise PayloadTooLargeError(details={"limit_bytes": limit})
            chunks.append(chunk)
        return b"".join(chunks)

    async def _health_response(self, request: Request) -> Response:
        """Gateway self status; ``?checkServices=true`` adds upstream checks."""
        payload: Dict[str, Any] = {
            "service": self.service_name,
            "status": OVERALL_HEALTHY,
            "timestamp": _utc_now_iso(),
            "uptime_seconds": self._get_uptime(),
            "version": "1.0.0",
            "environment": self.config.env,
            "gateway": {"status": "up"},
            "services": [],
        }
        status_code = 200

        if request.query_params.get("checkServices") == "true":
            overall = await self.health_checker.overall(self.routes)
            payload["status"] = overall["status"]
            payload["services"] = overall["services"]
            payload["summary"] = overall["summary"]
            status_code = overall["http_status"]

        self.metrics.record_health_check(payload["status"])
        return JSONResponse(status_code=status_code, content=payload)

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/")
        async def root():
            """Gateway banner and route summary."""
            return {
                "message": "API Gateway running",
                "version": "1.0.0",
                "timestamp": _utc_now_iso(),
                "services": [
                    {
                        "name": route.name,
                        "path": route.path_prefix,
                        "service": route.target,
                        "description": route.description,
                    }
                    for route in self.routes
                ],
            }

        @self.app.get("/health/detailed")
        async def detailed_health():
            """Aggregate upstream health with gateway internals."""
            overall = await self.health_checker.overall(self.routes, detailed=True)
            self.metrics.record_health_check(overall["status"])
            return JSONResponse(
                status_code=overall["http_status"],
                content={
                    "status": overall["status"],
                    "timestamp": _utc_now_iso(),
                    "uptime_seconds": self._get_uptime(),
                    "services": overall["services"],
                    "summary": overall["summary"],
                    "circuits": self.circuit_breakers.get_all_states(),
                    "token_cache": {
                        "size": len(self.token_cache),
                        "ttl_seconds": self.token_cache.ttl_seconds,
                    },
                    "configuration": {
                        "routes": [route.describe() for route in self.routes],
                        "rate_limit": {
                            "enabled": self.rate_limiter.enabled,
                            "window_seconds": self.rate_limiter.window_seconds,
                            "max_requests": self.rate_limiter.max_requests,
                        },
                    },
                    "process": self._process_info(),
                },
            )

        @self.app.get("/health/service/{service_name}")
        async def service_health(service_name: str):
            """Check a single upstream."""
            route = self.routes.find_service(service_name)
            if route is None:
                raise NotFoundError(
                    f"Service '{service_name}' not found",
                    details={"available_services": [r.name for r in self.routes]},
                )
            result = await self.health_checker.check(route, detailed=True)
            status_code = 503 if result.status == "down" else 200
            return JSONResponse(status_code=status_code, content=result.to_dict())

        @self.app.get("/api/v1/gateway/circuits")
        async def circuits():
            """State of every upstream circuit breaker."""
            return {"circuits": self.circuit_breakers.get_all_states()}

        @self.app.get("/api/v1/gateway/token-cache")
        async def token_cache_stats():
            return self.token_cache.stats()

        @self.app.delete("/api/v1/gateway/token-cache")
        async def token_cache_clear():
            removed = self.token_cache.clear()
            return {"message": "Token cache cleared", "removed": removed}

        @self.app.websocket("/{full_path:path}")
        async def websocket_proxy(websocket: WebSocket, full_path: str):
            await self.ws_relay.relay(websocket)

        @self.app.api_route("/{full_path:path}", methods=PROXY_METHODS)
        async def proxy(request: Request, full_path: str):
            """Forward anything else along the route table."""
            path = request.url.path
            route = self.routes.match(path)
            if route is None:
                raise NotFoundError(
                    "Route not found",
                    details={"path": path, "method": request.method},
                )

            rate = await self.rate_limiter.check(get_client_ip(request))
            if not rate.allowed:
                self.metrics.increment_counter("rate_limit_hits_total", endpoint=route.name)
                error = RateLimitError(
                    "Too many requests, please try again later",
                    details={"limit": rate.limit, "reset_in_seconds": rate.reset_in_seconds},
                )
                return self.error_response(request, error, headers=rate.headers())

            context = await self.auth_gate.authenticate(request, route)
            extra_headers = identity_headers(context) if context else {}
            body = await self._read_body(request)

            self.logger.info(
                "Proxying request",
                method=request.method,
                path=path,
                route=route.name,
                upstream=route.upstream_url(raw_request_path(request.scope)),
            )
            response = await self.forwarder.forward(route, request, body, extra_headers)
            if self.rate_limiter.enabled and rate.error is None:
                for name, value in rate.headers().items():
                    response.headers[name] = value
            return response


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = GatewayService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
