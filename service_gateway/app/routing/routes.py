"""
Static route table for the gateway.

Routes are loaded once at startup, either from a JSON file or from the
default table built out of the configured upstream URLs, and never change
afterwards. Matching walks the table top-down and the first prefix that
matches wins, so configuration order is significant.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Pattern, Sequence, Tuple, Union
from urllib.parse import urlsplit

from shared.config import BaseConfig
from shared.errors import ValidationError

DEFAULT_HEALTH_PATH = "/health"


def raw_request_path(scope: Dict[str, Any]) -> str:
    """Request path as sent on the wire, percent-encoding intact."""
    raw_path = scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return scope.get("path", "/")


@dataclass(frozen=True)
class PathRewrite:
    """Regex search/replace applied once to the incoming path."""

    pattern: Pattern[str]
    replacement: str

    @classmethod
    def compile(cls, pattern: str, replacement: str) -> "PathRewrite":
        return cls(re.compile(pattern), replacement)

    def apply(self, path: str) -> str:
        rewritten = self.pattern.sub(self.replacement, path, count=1)
        return rewritten or "/"


@dataclass(frozen=True)
class Route:
    """An upstream route. Immutable for the lifetime of the process."""

    name: str
    path_prefix: str
    target: str
    rewrite: Optional[PathRewrite] = None
    timeout: float = 30.0
    retries: int = 3
    health_path: str = DEFAULT_HEALTH_PATH
    websocket: bool = False
    auth_required: bool = False
    roles: Tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    def matches(self, path: str) -> bool:
        """Prefix match on a path segment boundary."""
        prefix = self.path_prefix.rstrip("/")
        if not prefix:
            return True
        return path == prefix or path.startswith(prefix + "/")

    def upstream_path(self, path: str) -> str:
        """Map a matched incoming path to the upstream path."""
        if self.rewrite is None:
            return path
        return self.rewrite.apply(path)

    def upstream_url(self, path: str, query: str = "") -> str:
        url = self.target.rstrip("/") + self.upstream_path(path)
        if query:
            url = f"{url}?{query}"
        return url

    @property
    def health_url(self) -> str:
        return self.target.rstrip("/") + self.health_path

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path_prefix,
            "target": self.target,
            "description": self.description,
            "timeout": self.timeout,
            "retries": self.retries,
            "websocket": self.websocket,
            "auth_required": self.auth_required,
        }


class RouteTable:
    """Ordered, immutable collection of routes."""

    def __init__(self, routes: Sequence[Route]):
        self._routes: Tuple[Route, ...] = tuple(routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    @property
    def routes(self) -> Tuple[Route, ...]:
        return self._routes

    def match(self, path: str) -> Optional[Route]:
        """Return the first route whose prefix matches ``path``."""
        for route in self._routes:
            if route.matches(path):
                return route
        return None

    def find_service(self, name: str) -> Optional[Route]:
        """Look a route up by name, prefix fragment or description."""
        needle = name.lower()
        for route in self._routes:
            if route.name.lower() == needle:
                return route
        for route in self._routes:
            if needle in route.path_prefix.lower() or needle in route.description.lower():
                return route
        return None


def validate_route_definitions(definitions: Sequence[Dict[str, Any]]) -> List[str]:
    """Return a list of human readable problems with raw route definitions."""
    errors: List[str] = []
    seen_names = set()
    for index, definition in enumerate(definitions):
        label = f"Route {index}"
        if not isinstance(definition, dict):
            errors.append(f"{label}: must be an object")
            continue

        path = definition.get("path")
        target = definition.get("target")
        if not path:
            errors.append(f"{label}: 'path' is required")
        elif not str(path).startswith("/"):
            errors.append(f"{label}: 'path' must start with '/'")
        if not target:
            errors.append(f"{label}: 'target' is required")
        elif urlsplit(str(target)).scheme not in ("http", "https"):
            errors.append(f"{label}: 'target' must be an http(s) URL")

        timeout = definition.get("timeout")
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout < 1):
            errors.append(f"{label}: 'timeout' must be at least 1 second")

        retries = definition.get("retries")
        if retries is not None and (not isinstance(retries, int) or retries < 0):
            errors.append(f"{label}: 'retries' must be a non-negative integer")

        for pattern in (definition.get("rewrite") or {}):
            try:
                re.compile(pattern)
            except re.error as exc:
                errors.append(f"{label}: invalid rewrite pattern {pattern!r}: {exc}")

        name = definition.get("name") or path
        if name in seen_names:
            errors.append(f"{label}: duplicate route name {name!r}")
        seen_names.add(name)

    return errors


def build_route(definition: Dict[str, Any], *, default_timeout: float = 30.0, default_retries: int = 3) -> Route:
    """Build a Route from a validated definition."""
    rewrite = None
    rules = definition.get("rewrite") or {}
    if rules:
        # One rule per route; the first listed wins.
        pattern, replacement = next(iter(rules.items()))
        rewrite = PathRewrite.compile(pattern, replacement)

    timeout = definition.get("timeout")
    retries = definition.get("retries")
    return Route(
        name=definition.get("name") or definition["path"],
        path_prefix=definition["path"],
        target=definition["target"],
        rewrite=rewrite,
        timeout=float(timeout) if timeout is not None else default_timeout,
        retries=int(retries) if retries is not None else default_retries,
        health_path=definition.get("health_path") or DEFAULT_HEALTH_PATH,
        websocket=bool(definition.get("websocket", False)),
        auth_required=bool(definition.get("auth_required", False)),
        roles=tuple(definition.get("roles") or ()),
        description=definition.get("description", ""),
    )


def default_route_definitions(config: BaseConfig) -> List[Dict[str, Any]]:
    """Route definitions derived from the configured upstream URLs."""
    return [
        {
            "name": "auth",
            "path": "/api/auth/v1",
            "target": config.auth_service_url,
            "rewrite": {"^/api/auth/v1": "/api/auth"},
            "description": "Authentication and authorization service",
        },
        {
            "name": "users",
            "path": "/api/users/v1",
            "target": config.user_service_url,
            "rewrite": {"^/api/users/v1": "/api/users"},
            "auth_required": True,
            "description": "User management service",
        },
        {
            "name": "products",
            "path": "/api/products/v1",
            "target": config.product_service_url,
            "rewrite": {"^/api/products/v1": ""},
            "auth_required": True,
            "description": "Product catalog service",
        },
        {
            "name": "orders",
            "path": "/api/orders/v1",
            "target": config.order_service_url,
            "rewrite": {"^/api/orders/v1": ""},
            "auth_required": True,
            "description": "Order management service",
        },
        {
            "name": "notifications",
            "path": "/api/notifications/v1",
            "target": config.notification_service_url,
            "rewrite": {"^/api/notifications/v1": ""},
            "websocket": True,
            "description": "Deployment notification relay",
        },
    ]


def load_route_definitions(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read route definitions from a JSON file."""
    route_path = Path(path)
    try:
        with route_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ValidationError(
            f"Unable to read routes file {route_path}",
            details={"error": str(exc)},
        ) from exc

    if isinstance(payload, dict):
        payload = payload.get("routes", [])
    if not isinstance(payload, list):
        raise ValidationError(f"Routes file {route_path} must contain a list of routes")
    return payload


def build_route_table(definitions: Sequence[Dict[str, Any]], *, default_timeout: float = 30.0,
                      default_retries: int = 3) -> RouteTable:
    """Validate definitions and compile them into a RouteTable."""
    errors = validate_route_definitions(definitions)
    if errors:
        raise ValidationError("Invalid route configuration", details={"errors": errors})
    return RouteTable([
        build_route(definition, default_timeout=default_timeout, default_retries=default_retries)
        for definition in definitions
    ])


def load_route_table(config: BaseConfig) -> RouteTable:
    """Load the route table for the gateway from configuration."""
    if config.routes_file:
        definitions = load_route_definitions(config.routes_file)
    else:
        definitions = default_route_definitions(config)
    return build_route_table(
        definitions,
        default_timeout=config.route_timeout_seconds,
        default_retries=config.route_retries,
    )
