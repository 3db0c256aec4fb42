"""
API Gateway Service package for the Portico Access Layer.

The gateway fronts client requests, enforcing:
- Routing: a static, ordered route table with path rewriting
- Authentication: local JWT verification, optional introspection against
  the Auth service, and a short-lived verified-token cache
- Rate limiting: fixed window per client IP, backed by Redis
- Circuit-breaking and retries for resilient upstream calls

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.routing: Route table loading and matching.
- app.proxy: HTTP forwarding and WebSocket relaying.
- app.auth: Auth gate and token cache.
- app.adapters: HTTP clients for internal services.
- app.health: Upstream health checks.
"""
