"""
Service registry data types.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ServiceKey(str, Enum):
    """Downstream services the gateway knows how to reach."""

    AUTH = "auth"
    PRODUCTS = "products"
    MANAGER = "manager"
    ADMIN = "admin"
    CART = "cart"


class ServiceStatus(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ServiceError:
    """Last failure observed for a service, by a probe or by the proxy."""

    message: str
    code: str
    timestamp: datetime
    request: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        if self.request is None:
            data.pop("request")
        return data


@dataclass
class ServiceDescriptor:
    """Mutable registry entry. Only the registry writes to it."""

    key: ServiceKey
    name: str
    base_url: str
    registered_at: datetime
    health_path: str = "/health"
    route_prefixes: Tuple[str, ...] = ()
    status: ServiceStatus = ServiceStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_error: Optional[ServiceError] = None
    response_time_ms: Optional[float] = None
    version: Optional[str] = None

    def snapshot(self) -> "ServiceSnapshot":
        return ServiceSnapshot(
            key=self.key,
            name=self.name,
            base_url=self.base_url,
            health_path=self.health_path,
            route_prefixes=self.route_prefixes,
            status=self.status,
            registered_at=self.registered_at,
            last_check=self.last_check,
            last_error=self.last_error,
            response_time_ms=self.response_time_ms,
            version=self.version,
        )


@dataclass(frozen=True)
class ServiceSnapshot:
    """Immutable view of a descriptor handed to readers."""

    key: ServiceKey
    name: str
    base_url: str
    health_path: str
    route_prefixes: Tuple[str, ...]
    status: ServiceStatus
    registered_at: datetime
    last_check: Optional[datetime] = None
    last_error: Optional[ServiceError] = None
    response_time_ms: Optional[float] = None
    version: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.status is ServiceStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.value,
            "name": self.name,
            "url": self.base_url,
            "status": self.status.value,
            "healthPath": self.health_path,
            "routes": list(self.route_prefixes),
            "registeredAt": _iso(self.registered_at),
            "lastCheck": _iso(self.last_check),
            "responseTime": f"{self.response_time_ms:.0f}ms" if self.response_time_ms is not None else "N/A",
            "version": self.version or "N/A",
            "lastError": self.last_error.to_dict() if self.last_error else None,
        }


@dataclass(frozen=True)
class RouteMatch:
    """Result of resolving a request path. ``service`` is None when unregistered."""

    prefix: str
    key: ServiceKey
    service: Optional[ServiceSnapshot] = None


@dataclass(frozen=True)
class HealthSummary:
    total: int
    healthy: int
    checked_at: datetime = field(compare=False, default_factory=datetime.now)

    @property
    def unhealthy(self) -> int:
        return self.total - self.healthy

    @property
    def all_healthy(self) -> bool:
        return self.healthy == self.total

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "healthy": self.healthy}
