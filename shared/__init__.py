"""
Shared utilities for the Portico Access Layer.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff calculation and retry helpers
- circuit_breaker: Per-upstream failure isolation
- rate_limit: Redis fixed-window rate limiting
- base_service: FastAPI service skeleton (middleware, health, errors)

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
