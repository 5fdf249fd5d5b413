"""
Service registry and route table.
"""

from .models import (
    HealthSummary,
    RouteMatch,
    ServiceError,
    ServiceKey,
    ServiceSnapshot,
    ServiceStatus,
)
from .routes import DEFAULT_ROUTES, RouteTable
from .service_registry import ServiceRegistry

__all__ = [
    "DEFAULT_ROUTES",
    "HealthSummary",
    "RouteMatch",
    "RouteTable",
    "ServiceError",
    "ServiceKey",
    "ServiceRegistry",
    "ServiceSnapshot",
    "ServiceStatus",
]
