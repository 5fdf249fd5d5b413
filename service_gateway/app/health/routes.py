"""
Health and diagnostics routes for the Gateway.

``GET /health`` (gateway self health) comes from the base service. These
routes report on the downstream services tracked by the registry.
"""

import os
import platform
import time
from typing import TYPE_CHECKING

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from shared.errors import utc_timestamp

from ..registry import ServiceStatus

if TYPE_CHECKING:
    from ..main import GatewayService


def create_health_router(gateway: "GatewayService") -> APIRouter:
    router = APIRouter(prefix="/health", tags=["health"])
    registry = gateway.registry
    logger = gateway.logger

    @router.get("/system")
    async def system_health():
        """Probe every service and report the aggregate status."""
        summary = await registry.check_all_services_health()
        services = registry.get_all_services()
        overall = "healthy" if summary.all_healthy else "degraded"

        body = {
            "success": summary.all_healthy,
            "data": {
                "gateway": {
                    "status": "healthy",
                    "timestamp": utc_timestamp(),
                    "uptime": gateway._get_uptime(),
                },
                "services": [
                    {
                        "name": service.name,
                        "status": service.status.value,
                        "url": service.base_url,
                        "lastCheck": service.to_dict()["lastCheck"],
                        "responseTime": service.to_dict()["responseTime"],
                        "version": service.version or "N/A",
                        "lastError": service.last_error.to_dict() if service.last_error else None,
                    }
                    for service in services
                ],
                "summary": {
                    "total": summary.total,
                    "healthy": summary.healthy,
                    "unhealthy": summary.unhealthy,
                    "overallStatus": overall,
                },
            },
        }
        return JSONResponse(status_code=200 if summary.all_healthy else 503, content=body)

    @router.get("/service/{service_name}")
    async def service_info(service_name: str):
        """Live probe of one service."""
        service = registry.get_service_by_name(service_name)
        if service is None:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "message": "Service not found",
                    "availableServices": registry.service_keys(),
                },
            )

        is_healthy = await registry.check_service_health(service.key)
        info = registry.get_service(service.key).to_dict()
        info["key"] = service.key.value
        info["isHealthy"] = is_healthy
        return {"success": True, "data": info}

    @router.get("/stats")
    async def gateway_stats():
        services = registry.get_all_services()
        config = gateway.config

        def count(status: ServiceStatus) -> int:
            return sum(1 for service in services if service.status is status)

        mapping = registry.route_table.mapping()
        return {
            "success": True,
            "data": {
                "gateway": {
                    "version": config.service_version,
                    "uptime": gateway._get_uptime(),
                    "pid": os.getpid(),
                    "pythonVersion": platform.python_version(),
                    "platform": platform.system().lower(),
                },
                "services": {
                    "total": len(services),
                    "healthy": count(ServiceStatus.HEALTHY),
                    "unhealthy": count(ServiceStatus.UNHEALTHY),
                    "unknown": count(ServiceStatus.UNKNOWN),
                },
                "routes": {
                    "total": len(mapping),
                    "mapping": mapping,
                },
                "environment": {
                    "env": config.env,
                    "port": config.port,
                    "rateLimitWindow": config.rate_limit_window_ms,
                    "rateLimitMax": config.rate_limit_max_requests,
                    "rateLimitBackend": config.rate_limit_backend,
                },
            },
        }

    @router.post("/refresh")
    async def refresh_services():
        logger.info("Manual service registry refresh requested")
        started = time.perf_counter()
        summary = await registry.check_all_services_health()
        return {
            "success": True,
            "message": "Service registry refreshed successfully",
            "data": {
                "timestamp": utc_timestamp(),
                "durationMs": round((time.perf_counter() - started) * 1000, 2),
                "healthCheck": summary.to_dict(),
            },
        }

    return router
