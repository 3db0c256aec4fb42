"""
Base service class for Portico Access Layer services.
"""

import os
import time
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException, ErrorResponse, PayloadTooLargeError, ValidationError
from shared.logging import clear_context, configure_logging, get_logger, install_crash_handlers, set_request_id
from shared.metrics import MetricsCollector

# Added to responses that do not already carry them.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = MetricsCollector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Portico Access Layer - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.diagnostics_enabled else None,
            redoc_url="/redoc" if self.config.diagnostics_enabled else None,
        )

    def _setup_middleware(self):
        """Set up middleware."""
        self.app.add_middleware(GZipMiddleware, minimum_size=self.config.gzip_minimum_size)
        origins = self.config.cors_origins
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            # Browsers reject credentialed responses for a wildcard origin
            allow_credentials="*" not in origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            request.state.request_id = request_id
            start_time = time.time()

            try:
                oversized = self._oversized_body(request)
                if oversized is not None:
                    self.metrics.record_error(oversized.code)
                    response = self.error_response(request, oversized)
                else:
                    response = await call_next(request)
            finally:
                clear_context()

            duration = time.time() - start_time
            self.metrics.record_http_request(
                method=request.method,
                endpoint=self._metric_endpoint(request),
                status_code=response.status_code,
                duration=duration
            )
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )

            if self.config.security_headers_enabled:
                for name, value in SECURITY_HEADERS.items():
                    response.headers.setdefault(name, value)
            response.headers["X-Request-ID"] = request_id
            return response

    def _oversized_body(self, request: Request) -> Optional[PayloadTooLargeError]:
        """A 413 error when the declared body length is over the limit."""
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.config.max_body_bytes:
            return PayloadTooLargeError(details={"limit_bytes": self.config.max_body_bytes})
        return None

    def _metric_endpoint(self, request: Request) -> str:
        """Label used for HTTP metrics; the matched route template keeps cardinality bounded."""
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check(request: Request):
            """Health check endpoint."""
            return await self._health_response(request)

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(content=self.metrics.render(), media_type=self.metrics.content_type)

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            """Handle AccessLayerException."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Access layer error",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path,
            )
            self.metrics.record_error(exc.code)
            return self.error_response(request, exc)

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Render schema violations as 400 validation errors."""
            errors = [
                {
                    "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                    "message": error.get("msg"),
                }
                for error in exc.errors()
            ]
            self.metrics.record_error("VALIDATION_ERROR")
            return self.error_response(
                request,
                ValidationError("Invalid request data", details={"errors": errors}),
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            error = AccessLayerException("INTERNAL_ERROR", "Internal server error", status_code=500)
            return self.error_response(request, error, cause=exc)

    def error_response(self, request: Request, exc: AccessLayerException,
                       cause: Optional[BaseException] = None,
                       headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        """Render an error in the shared JSON shape."""
        stack = None
        if self.config.diagnostics_enabled:
            source = cause or exc
            stack = "".join(traceback.format_exception(type(source), source, source.__traceback__))

        body: ErrorResponse = exc.to_response(
            path=request.url.path,
            method=request.method,
            request_id=getattr(request.state, "request_id", None),
            stack=stack,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(exclude_none=True),
            headers=headers,
        )

    async def _health_response(self, request: Request) -> Response:
        """Build the /health response. Override for richer checks."""
        try:
            dependencies = await self._check_dependencies()
            self.metrics.record_health_check("ok")
            return JSONResponse({
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown"),
                **self._health_details(),
            })
        except Exception as e:
            self.logger.error("Health check failed", error=str(e))
            self.metrics.record_health_check("error")
            return JSONResponse(
                status_code=503,
                content={
                    "service": self.service_name,
                    "status": "error",
                    "error": str(e)
                }
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _health_details(self) -> Dict[str, Any]:
        """Extra fields for the health payload. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn

        @self.app.on_event("startup")
        async def _install_crash_handlers():
            install_crash_handlers(self.service_name)

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
