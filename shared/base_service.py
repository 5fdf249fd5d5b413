"""
Base service class for Ferremas services.
"""

import os
import time
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple

import asyncpg
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import ServiceConfig, get_config
from shared.errors import FerremasError, error_envelope, utc_timestamp
from shared.logging import (
    clear_context,
    configure_logging,
    generate_correlation_id,
    get_logger,
    set_correlation_id,
)
from shared.metrics import get_metrics_collector

CORRELATION_HEADER = "X-Correlation-ID"


class BaseService:
    """Base service class with common functionality.

    Middleware is installed innermost first: the subclass' service
    middleware, then request logging, then the subclass' edge middleware,
    then CORS (outermost).
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None,
                 display_name: Optional[str] = None, service_label: Optional[str] = None):
        self.service_name = service_name
        self.display_name = display_name or f"{service_name}-service"
        self.service_label = service_label or self.display_name
        self.port = port
        self.config = config or get_config(service_name, port)
        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name, version=self.config.service_version)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_error_handlers()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        local = not self.config.is_production
        return FastAPI(
            title=f"Ferremas {self.display_name}",
            description=f"Ferremas - {self.display_name}",
            version=self.config.service_version,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.on_startup()
        try:
            yield
        finally:
            await self.on_shutdown()

    async def on_startup(self):
        """Start background resources. Override in subclasses."""

    async def on_shutdown(self):
        """Release background resources. Override in subclasses."""

    def _setup_service_middleware(self):
        """Innermost middleware. Override in subclasses."""

    def _setup_edge_middleware(self):
        """Middleware wrapped only by CORS. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""
        self._setup_service_middleware()

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            correlation_id = (
                request.headers.get(CORRELATION_HEADER)
                or request.headers.get("X-Request-ID")
                or generate_correlation_id()
            )
            set_correlation_id(correlation_id)
            request.state.correlation_id = correlation_id
            start_time = time.time()

            try:
                response = await call_next(request)
                duration = time.time() - start_time

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=self._metrics_endpoint(request),
                    status_code=response.status_code,
                    duration=duration
                )
                self._log_request(request, response.status_code, duration)

                response.headers[CORRELATION_HEADER] = correlation_id
                return response
            finally:
                clear_context()

        self._setup_edge_middleware()

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
            allow_headers=[
                "Origin",
                "X-Requested-With",
                "Content-Type",
                "Accept",
                "Authorization",
                self.config.api_key_header,
                CORRELATION_HEADER,
            ],
            expose_headers=[
                "X-Total-Count",
                "X-Page-Count",
                "X-Gateway-Response-Time",
                "X-Service-Name",
                CORRELATION_HEADER,
            ],
        )

    def _metrics_endpoint(self, request: Request) -> str:
        """Label requests by route template so path parameters do not explode cardinality."""
        route = request.scope.get("route")
        return getattr(route, "path", None) or "unmatched"

    def _log_request(self, request: Request, status_code: int, duration: float):
        user_info = getattr(request.state, "user_info", None) or {}
        fields = dict(
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2),
            user_id=user_info.get("id", "anonymous"),
            user_role=user_info.get("role", "guest"),
            remote_addr=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        if status_code >= 500:
            self.logger.error("HTTP request", **fields)
        elif status_code >= 400:
            self.logger.warning("HTTP request", **fields)
        else:
            self.logger.info("HTTP request", **fields)

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            status_code, body = await self._health_payload()
            self.metrics.record_health_check("ok" if status_code == 200 else "error")
            return JSONResponse(status_code=status_code, content=body)

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=generate_latest(self.metrics.registry),
                media_type=CONTENT_TYPE_LATEST
            )

    async def _health_payload(self) -> Tuple[int, Dict[str, Any]]:
        try:
            dependencies = await self._check_dependencies()
        except Exception as e:
            self.logger.error("Health check failed", error=str(e))
            dependencies = {"self": "error"}

        healthy = all(value == "ok" for value in dependencies.values())
        body = {
            "success": healthy,
            "message": f"{self.service_label} is running" if healthy else f"{self.service_label} is degraded",
            "timestamp": utc_timestamp(),
            "service": self.display_name,
            "version": self.config.service_version,
            "data": {
                "service": self.display_name,
                "status": "healthy" if healthy else "unhealthy",
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            },
        }
        return (200 if healthy else 503), body

    def _setup_error_handlers(self):
        @self.app.exception_handler(FerremasError)
        async def ferremas_exception_handler(request: Request, exc: FerremasError):
            """Handle FerremasError."""
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                path=request.url.path,
            )
            headers = None
            if exc.status_code == 429 and "retryAfter" in exc.details:
                headers = {"Retry-After": str(exc.details["retryAfter"])}
            return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            errors: Dict[str, str] = {}
            for error in exc.errors():
                location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
                field = ".".join(location) or "body"
                errors.setdefault(field, error.get("msg", "Invalid value"))
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": "Validation failed", "errors": errors},
            )

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            message = exc.detail if isinstance(exc.detail, str) else "Request failed"
            if exc.status_code == 404:
                message = "Route not found"
            return JSONResponse(
                status_code=exc.status_code,
                content={"success": False, "message": message},
                headers=getattr(exc, "headers", None),
            )

        @self.app.exception_handler(asyncpg.UniqueViolationError)
        async def unique_violation_handler(request: Request, exc: asyncpg.UniqueViolationError):
            self.logger.warning("Unique constraint violation", error=str(exc))
            return JSONResponse(status_code=409, content=error_envelope("Resource already exists"))

        @self.app.exception_handler(asyncpg.ForeignKeyViolationError)
        async def foreign_key_violation_handler(request: Request, exc: asyncpg.ForeignKeyViolationError):
            self.logger.warning("Foreign key violation", error=str(exc))
            return JSONResponse(status_code=400, content=error_envelope("Invalid reference"))

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error(type(exc).__name__)
            body: Dict[str, Any] = {
                "success": False,
                "message": "Internal server error",
                "timestamp": utc_timestamp(),
                "correlationId": getattr(request.state, "correlation_id", "unknown"),
            }
            if not self.config.is_production:
                body["error"] = str(exc)
                body["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
            return JSONResponse(status_code=500, content=body)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return round(time.time() - self._start_time, 3)

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
            proxy_headers=True,
            forwarded_allow_ips=self.config.forwarded_allow_ips,
        )
