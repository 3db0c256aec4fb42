"""
Shared configuration management for the Portico Access Layer.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``PORTICO_``-prefixed environment
    variable (``PORTICO_LOG_LEVEL=debug``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTICO_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    allowed_origins: str = "*"

    # HTTP
    max_body_bytes: int = 10 * 1024 * 1024
    gzip_minimum_size: int = 1024
    security_headers_enabled: bool = True

    # Rate limiting
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 900
    rate_limit_max_requests: int = 1000
    login_rate_limit_max_requests: int = 5

    # Tokens
    jwt_secret: str = "change-me"
    jwt_refresh_secret: str = "change-me-too"
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 3600
    refresh_token_ttl_seconds: int = 7 * 24 * 3600

    # Accounts
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    max_login_attempts: int = 5
    lockout_seconds: int = 2 * 3600
    max_refresh_tokens: int = 5
    bootstrap_admins: str = ""

    # Upstream services
    auth_service_url: str = "http://auth-service:3001"
    user_service_url: str = "http://auth-service:3001"
    product_service_url: str = "http://product-service:3003"
    order_service_url: str = "http://order-service:3004"
    notification_service_url: str = "http://notification-service:6003"

    # Gateway
    routes_file: Optional[str] = None
    route_timeout_seconds: float = 30.0
    route_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    circuit_failure_threshold: int = 5
    circuit_reset_timeout: float = 30.0
    token_cache_ttl_seconds: float = 300.0
    introspection_enabled: bool = True
    introspection_timeout: float = 5.0
    health_check_timeout: float = 5.0
    detailed_health_check_timeout: float = 10.0

    # Notifications
    deployment_history_size: int = 10
    max_ws_connections: int = 1000

    @property
    def cors_origins(self) -> List[str]:
        """Allowed CORS origins parsed from the comma separated setting."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def bootstrap_admin_usernames(self) -> List[str]:
        """Usernames that receive the admin role when they register."""
        return [name.strip() for name in self.bootstrap_admins.split(",") if name.strip()]

    @property
    def diagnostics_enabled(self) -> bool:
        """Whether error responses may carry stack traces."""
        return self.env.lower() in ("local", "development")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    overrides.setdefault("port", port)
    return ServiceConfig(service_name=service_name, **overrides)
