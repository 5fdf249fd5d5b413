"""
API Gateway service for the Ferremas platform.
"""

import os
from typing import Any, Dict, Optional, Tuple

import httpx
from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import utc_timestamp

from .adapters.auth_client import AuthClient
from .health import create_health_router
from .middleware import (
    ApiKeyMiddleware,
    GatewayAuthGuard,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
)
from .proxy import ProxyRouter
from .ratelimit import RateLimitMiddleware, RateLimitPolicies, create_rate_limiter
from .registry import ServiceRegistry

DEFAULT_PORT = 3000
PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiter=None,
    ):
        config = config or get_config("gateway", DEFAULT_PORT)

        # Needed by the middleware installed during BaseService.__init__
        self.rate_limiter = rate_limiter or create_rate_limiter(config)
        self.rate_limit_policies = RateLimitPolicies.from_config(config)
        self.http_client = httpx.AsyncClient(transport=transport)

        super().__init__("gateway", DEFAULT_PORT, config=config,
                         display_name="api-gateway", service_label="API Gateway")

        self.registry = ServiceRegistry.from_config(self.config, http_client=self.http_client, metrics=self.metrics)
        self.auth_client = AuthClient(
            self.config.auth_service_url,
            self.http_client,
            timeout=self.config.health_check_timeout / 1000,
        )
        self.auth_guard = GatewayAuthGuard(
            self.auth_client,
            jwt_secret=self.config.jwt_secret,
            jwt_algorithm=self.config.jwt_algorithm,
            verification_method=self.config.auth_verification_method,
        )
        self.proxy = ProxyRouter(
            self.registry,
            self.http_client,
            timeout_ms=self.config.proxy_timeout,
            metrics=self.metrics,
        )

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def on_startup(self):
        await self.registry.start()
        self.logger.info(
            "API Gateway started",
            port=self.config.port,
            services=self.registry.service_keys(),
            rate_limit_backend=self.config.rate_limit_backend,
        )

    async def on_shutdown(self):
        await self.registry.stop()
        await self.rate_limiter.close()
        await self.http_client.aclose()
        self.logger.info("API Gateway stopped")

    def _setup_service_middleware(self):
        # Added innermost first: validation -> API key -> rate limiting
        self.app.add_middleware(
            RateLimitMiddleware,
            limiter=self.rate_limiter,
            policies=self.rate_limit_policies,
            jwt_secret=self.config.jwt_secret,
            jwt_algorithm=self.config.jwt_algorithm,
            metrics=self.metrics,
        )
        self.app.add_middleware(
            ApiKeyMiddleware,
            api_key=self.config.api_key,
            header_name=self.config.api_key_header,
        )
        self.app.add_middleware(RequestValidationMiddleware)

    def _setup_edge_middleware(self):
        self.app.add_middleware(SecurityHeadersMiddleware)

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/")
        async def root():
            """Gateway info and route index."""
            return {
                "success": True,
                "message": "Ferremas API Gateway",
                "version": self.config.service_version,
                "timestamp": utc_timestamp(),
                "documentation": {
                    "health": "/health",
                    "systemHealth": "/health/system",
                    "stats": "/health/stats",
                },
                "services": {
                    prefix.rsplit("/", 1)[-1]: prefix
                    for prefix in self.registry.route_table.prefixes()
                },
            }

        self.app.include_router(create_health_router(self))

        # Registered last so every route above takes precedence
        @self.app.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(request: Request, full_path: str):
            denied = await self.auth_guard.authorize(request)
            if denied is not None:
                return denied
            return await self.proxy.handle(request)

    async def _health_payload(self) -> Tuple[int, Dict[str, Any]]:
        status_code, body = await super()._health_payload()
        body["data"]["pid"] = os.getpid()
        body["data"]["uptime"] = body["data"]["uptime_seconds"]
        return status_code, body


def create_app(**overrides):
    """Create FastAPI application."""
    service = GatewayService(**overrides)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
