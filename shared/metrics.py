"""
Prometheus metrics shared by the Portico services.

Metric families are declared per service in ``_FAMILIES``; every collector
gets the common families plus those declared for its service name.
"""

from typing import Any, Dict, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest

_Family = Tuple[type, str, str, Tuple[str, ...]]

_COMMON: Tuple[_Family, ...] = (
    (Counter, "http_requests_total", "Total HTTP requests", ("method", "endpoint", "status_code")),
    (Histogram, "http_request_duration_seconds", "HTTP request duration in seconds", ("method", "endpoint")),
    (Counter, "health_check_total", "Total health check requests", ("status",)),
    (Counter, "errors_total", "Total errors", ("error_type", "service")),
    (Counter, "business_events_total", "Total business events", ("event_type", "service")),
)

_FAMILIES: Dict[str, Tuple[_Family, ...]] = {
    "gateway": (
        (Counter, "upstream_requests_total", "Forwarded upstream attempts", ("route", "outcome")),
        (Histogram, "upstream_request_duration_seconds", "Upstream time to response headers", ("route",)),
        (Gauge, "circuit_breaker_state", "Breaker state (0=closed, 1=half_open, 2=open)", ("upstream",)),
        (Counter, "rate_limit_hits_total", "Requests rejected by the rate limiter", ("endpoint",)),
        (Counter, "cache_hits_total", "Token cache hits", ("cache_type",)),
        (Counter, "cache_misses_total", "Token cache misses", ("cache_type",)),
    ),
    "auth": (
        (Counter, "login_attempts_total", "Login attempts by outcome", ("outcome",)),
        (Counter, "tokens_issued_total", "Issued JWTs by type", ("token_type",)),
    ),
    "notifications": (
        (Gauge, "active_connections", "Open WebSocket connections", ()),
        (Counter, "broadcasts_total", "Broadcast events sent", ("event",)),
    ),
}


class MetricsCollector:
    """Holds one service's metric families in a private registry.

    A private registry lets several services, or several test instances of
    one service, share a process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": "1.0.0"})

        for kind, name, documentation, labels in _COMMON + _FAMILIES.get(service_name, ()):
            self._metrics[name] = kind(name, documentation, list(labels), registry=self.registry)

    def _child(self, metric_name: str, labels: Dict[str, str]):
        metric = self._metrics.get(metric_name)
        if metric is None:
            return None
        return metric.labels(**labels) if labels else metric

    def render(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.increment_counter("http_requests_total", method=method, endpoint=endpoint, status_code=str(status_code))
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_health_check(self, status: str):
        self.increment_counter("health_check_total", status=status)

    def record_error(self, error_type: str, service: Optional[str] = None):
        self.increment_counter("errors_total", error_type=error_type, service=service or self.service_name)

    def record_business_event(self, event_type: str, service: Optional[str] = None):
        self.increment_counter("business_events_total", event_type=event_type, service=service or self.service_name)

    # Unknown metric names are ignored so components can run with any collector.
    def increment_counter(self, metric_name: str, **labels):
        child = self._child(metric_name, labels)
        if child is not None:
            child.inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        child = self._child(metric_name, labels)
        if child is not None:
            child.set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        child = self._child(metric_name, labels)
        if child is not None:
            child.observe(value)
