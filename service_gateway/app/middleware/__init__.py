"""
Gateway middleware: edge security and route-level authentication.
"""

from .auth import ROUTE_ROLES, GatewayAuthGuard
from .security import (
    SECURITY_HEADERS,
    ApiKeyMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
)

__all__ = [
    "ROUTE_ROLES",
    "SECURITY_HEADERS",
    "ApiKeyMiddleware",
    "GatewayAuthGuard",
    "RequestValidationMiddleware",
    "SecurityHeadersMiddleware",
]
