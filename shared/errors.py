"""
Shared error handling for the Ferremas services.

Every service answers with the same envelope::

    {"success": false, "message": "...", "errors": {...}, "error": {...}}

``errors`` carries field-level validation messages and ``error`` carries a
machine readable code plus optional diagnostics (for example the upstream
service name).
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional


class FerremasError(Exception):
    """Base exception for Ferremas services."""

    status_code: int = 500

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

    def to_response(self) -> Dict[str, Any]:
        """Convert to the response envelope."""
        return error_envelope(self.message, code=self.code, details=self.details)


class ValidationError(FerremasError):
    """Malformed request body or query."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, str]] = None):
        super().__init__("VALIDATION_ERROR", message)
        self.errors = errors or {}

    def to_response(self) -> Dict[str, Any]:
        body = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class AuthenticationError(FerremasError):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHENTICATION_ERROR"):
        super().__init__(code, message, details)


class InvalidTokenError(AuthenticationError):
    """Token signature, structure or type is wrong."""

    def __init__(self, message: str = "Invalid token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INVALID_TOKEN")


class TokenExpiredError(AuthenticationError):
    """Token signature is fine but its expiry has passed."""

    def __init__(self, message: str = "Token expired", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="TOKEN_EXPIRED")


class InvalidOrExpiredRefreshTokenError(AuthenticationError):
    def __init__(self, message: str = "Invalid or expired refresh token"):
        super().__init__(message, code="INVALID_REFRESH_TOKEN")


class UserInactiveError(AuthenticationError):
    def __init__(self, message: str = "User account is inactive"):
        super().__init__(message, code="USER_INACTIVE")


class AuthorizationError(FerremasError):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class NotFoundError(FerremasError):
    status_code = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConflictError(FerremasError):
    """Duplicate unique key."""

    status_code = 409

    def __init__(self, message: str = "Resource already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)


class RateLimitError(FerremasError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Too many requests", retry_after: int = 60):
        super().__init__("RATE_LIMIT_ERROR", message, {"retryAfter": retry_after})
        self.retry_after = retry_after

    def to_response(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "retryAfter": self.retry_after}


class UpstreamUnavailableError(FerremasError):
    """Downstream service refused, reset or otherwise failed the connection."""

    status_code = 503

    def __init__(self, service: str, message: str = "Service temporarily unavailable",
                 code: str = "SERVICE_UNAVAILABLE"):
        super().__init__(code, message, {"service": service})
        self.service = service


class UpstreamTimeoutError(UpstreamUnavailableError):
    status_code = 504

    def __init__(self, service: str, message: str = "Service request timeout"):
        super().__init__(service, message, code="ETIMEDOUT")


def utc_timestamp() -> str:
    """Current time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def success_envelope(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def error_envelope(message: str, code: Optional[str] = None,
                   details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": message}
    if code:
        error = {"code": code, "timestamp": utc_timestamp()}
        error.update(details or {})
        body["error"] = error
    return body
