"""
Service registry for the API gateway.

The registry owns every service descriptor and is the only component that
mutates them. Readers get immutable snapshots. Health is refreshed by a
background probe loop and by failures reported from the proxy.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..upstream import classify_transport_error
from .models import (
    HealthSummary,
    RouteMatch,
    ServiceDescriptor,
    ServiceError,
    ServiceKey,
    ServiceSnapshot,
    ServiceStatus,
)
from .routes import RouteTable


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ServiceRegistry:
    """Registry of downstream services and their health."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        route_table: Optional[RouteTable] = None,
        check_interval_ms: int = 30000,
        check_timeout_ms: int = 5000,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.route_table = route_table or RouteTable()
        self.check_interval = check_interval_ms / 1000
        self.check_timeout = check_timeout_ms / 1000
        self.metrics = metrics
        self.logger = get_logger("gateway.registry")

        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self._services: Dict[ServiceKey, ServiceDescriptor] = {}
        self._probe_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config, http_client: Optional[httpx.AsyncClient] = None,
                    metrics: Optional[MetricsCollector] = None) -> "ServiceRegistry":
        """Build a registry with the standard Ferremas services registered."""
        registry = cls(
            http_client=http_client,
            check_interval_ms=config.health_check_interval,
            check_timeout_ms=config.health_check_timeout,
            metrics=metrics,
        )
        registry.register_service(ServiceKey.AUTH, "auth-service", config.auth_service_url)
        registry.register_service(ServiceKey.PRODUCTS, "product-service", config.product_service_url)
        registry.register_service(ServiceKey.MANAGER, "manager-service", config.manager_service_url)
        registry.register_service(ServiceKey.ADMIN, "admin-service", config.admin_service_url)
        if config.cart_service_enabled:
            registry.register_service(ServiceKey.CART, "cart-service", config.cart_service_url)
        return registry

    # Registration and lookup

    def register_service(self, key: ServiceKey, name: str, base_url: str,
                         health_path: str = "/health") -> ServiceSnapshot:
        """Register or replace a service. Its status starts as unknown."""
        key = ServiceKey(key)
        descriptor = ServiceDescriptor(
            key=key,
            name=name,
            base_url=base_url.rstrip("/"),
            health_path=health_path,
            route_prefixes=self.route_table.prefixes_for(key),
            registered_at=_now(),
        )
        self._services[key] = descriptor
        self.logger.info("Service registered", service=name, key=key.value, url=descriptor.base_url)
        return descriptor.snapshot()

    def get_service(self, key) -> Optional[ServiceSnapshot]:
        try:
            descriptor = self._services.get(ServiceKey(key))
        except ValueError:
            return None
        return descriptor.snapshot() if descriptor else None

    def get_service_by_name(self, name: str) -> Optional[ServiceSnapshot]:
        """Look a service up by registry key or by service name."""
        snapshot = self.get_service(name)
        if snapshot:
            return snapshot
        for descriptor in self._services.values():
            if descriptor.name == name:
                return descriptor.snapshot()
        return None

    def get_all_services(self) -> List[ServiceSnapshot]:
        return [descriptor.snapshot() for descriptor in self._services.values()]

    def get_healthy_services(self) -> List[ServiceSnapshot]:
        return [snapshot for snapshot in self.get_all_services() if snapshot.healthy]

    def service_keys(self) -> List[str]:
        return [key.value for key in self._services]

    def find_service_for_path(self, path: str) -> Optional[RouteMatch]:
        """Resolve ``path`` against the route table.

        Returns None when no prefix matches. A matching prefix whose service
        is not registered yields a match with ``service`` set to None.
        """
        resolved = self.route_table.resolve(path)
        if resolved is None:
            return None
        prefix, key = resolved
        return RouteMatch(prefix=prefix, key=key, service=self.get_service(key))

    # Health

    async def check_service_health(self, key) -> bool:
        """Probe one service and record the outcome on its descriptor."""
        descriptor = self._services.get(ServiceKey(key))
        if descriptor is None:
            return False

        url = f"{descriptor.base_url}{descriptor.health_path}"
        started = time.perf_counter()
        error: Optional[ServiceError] = None
        version: Optional[str] = None

        try:
            response = await self._client.get(url, timeout=self.check_timeout)
            if response.status_code != 200:
                error = ServiceError(
                    message=f"Request failed with status code {response.status_code}",
                    code=f"HTTP_{response.status_code}",
                    timestamp=_now(),
                )
            else:
                body = response.json()
                if not isinstance(body, dict) or body.get("success") is not True:
                    error = ServiceError(
                        message="Health endpoint did not report success",
                        code="UNHEALTHY_RESPONSE",
                        timestamp=_now(),
                    )
                else:
                    data = body.get("data")
                    version = body.get("version") or (data.get("version") if isinstance(data, dict) else None)
        except httpx.HTTPError as e:
            error = ServiceError(message=str(e) or type(e).__name__,
                                 code=classify_transport_error(e), timestamp=_now())
        except ValueError as e:
            error = ServiceError(message=f"Invalid health response: {e}",
                                 code="INVALID_RESPONSE", timestamp=_now())

        descriptor.last_check = _now()
        if error is None:
            descriptor.status = ServiceStatus.HEALTHY
            descriptor.response_time_ms = (time.perf_counter() - started) * 1000
            descriptor.version = version
            descriptor.last_error = None
        else:
            descriptor.status = ServiceStatus.UNHEALTHY
            descriptor.last_error = error
            self.logger.warning(
                "Service health check failed",
                service=descriptor.name,
                error=error.message,
                code=error.code,
            )

        self._record_health(descriptor)
        return error is None

    async def check_all_services_health(self) -> HealthSummary:
        """Probe every registered service concurrently."""
        keys = list(self._services)
        results = await asyncio.gather(
            *(self.check_service_health(key) for key in keys),
            return_exceptions=True,
        )
        healthy = 0
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                self.logger.error("Health probe crashed", service=key.value, error=str(result))
            elif result:
                healthy += 1

        summary = HealthSummary(total=len(keys), healthy=healthy, checked_at=_now())
        self.logger.info("Health check completed", healthy=summary.healthy, total=summary.total)
        return summary

    def mark_service_unhealthy(self, key, message: str, code: str,
                               request: Optional[str] = None) -> None:
        """Record a failure observed outside the probe loop, e.g. by the proxy."""
        descriptor = self._services.get(ServiceKey(key))
        if descriptor is None:
            return
        descriptor.status = ServiceStatus.UNHEALTHY
        descriptor.last_error = ServiceError(message=message, code=code, timestamp=_now(), request=request)
        self.logger.warning("Service marked unhealthy", service=descriptor.name, code=code, error=message)
        self._record_health(descriptor)

    def _record_health(self, descriptor: ServiceDescriptor) -> None:
        if self.metrics:
            self.metrics.set_gauge(
                "upstream_healthy",
                1 if descriptor.status is ServiceStatus.HEALTHY else 0,
                service=descriptor.name,
            )

    # Probe loop

    async def start(self) -> None:
        """Run an immediate sweep, then one every ``check_interval`` seconds."""
        if self._probe_task is None:
            self._probe_task = asyncio.create_task(self._probe_loop())
            self.logger.info("Health monitoring started", interval_seconds=self.check_interval)

    async def _probe_loop(self) -> None:
        while True:
            try:
                await self.check_all_services_health()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Health sweep failed", error=str(e))
            await asyncio.sleep(self.check_interval)

    @property
    def monitoring(self) -> bool:
        return self._probe_task is not None and not self._probe_task.done()

    async def stop(self) -> None:
        if self._probe_task is not None:
            self._probe_task.cancel()
            try:
                await self._probe_task
            except asyncio.CancelledError:
                pass
            self._probe_task = None
            self.logger.info("Health monitoring stopped")
        if self._owns_client:
            await self._client.aclose()
