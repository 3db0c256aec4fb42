"""
Route table loading and matching for the gateway.
"""

from .routes import PathRewrite, Route, RouteTable, build_route_table, load_route_table

__all__ = [
    "PathRewrite",
    "Route",
    "RouteTable",
    "build_route_table",
    "load_route_table",
]
