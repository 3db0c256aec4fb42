"""
Shared error handling for the Portico Access Layer.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_utc_now_iso)
    path: Optional[str] = None
    method: Optional[str] = None
    request_id: Optional[str] = None
    stack: Optional[str] = None


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, **context: Any) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details,
            **context,
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """Missing resource errors."""

    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConflictError(AccessLayerException):
    """Duplicate resource errors."""

    status_code = 409

    def __init__(self, message: str = "Resource already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("DUPLICATE_ERROR", message, details)


class LockedError(AccessLayerException):
    """Locked account errors."""

    status_code = 423

    def __init__(self, message: str = "Account locked", details: Optional[Dict[str, Any]] = None):
        super().__init__("ACCOUNT_LOCKED", message, details)


class PayloadTooLargeError(AccessLayerException):
    """Request body over the configured limit."""

    status_code = 413

    def __init__(self, message: str = "Request body too large", details: Optional[Dict[str, Any]] = None):
        super().__init__("PAYLOAD_TOO_LARGE", message, details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class BadGatewayError(AccessLayerException):
    """Upstream could not be reached."""

    status_code = 502

    def __init__(self, message: str = "Upstream service unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_GATEWAY", message, details)


class ServiceUnavailableError(AccessLayerException):
    """Service or dependency temporarily unavailable."""

    status_code = 503

    def __init__(self, message: str = "Service unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_UNAVAILABLE", message, details)


class GatewayTimeoutError(AccessLayerException):
    """Upstream call exceeded its timeout."""

    status_code = 504

    def __init__(self, message: str = "Upstream request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("GATEWAY_TIMEOUT", message, details)

