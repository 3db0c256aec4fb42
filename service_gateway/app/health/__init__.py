"""
Upstream health checks for the gateway.
"""

from .checker import HealthChecker, ServiceHealth, aggregate_status

__all__ = ["HealthChecker", "ServiceHealth", "aggregate_status"]
