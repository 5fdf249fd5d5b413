"""
Reverse proxy forwarding matched requests to downstream services.

Each request moves through an explicit pipeline:

    resolve -> rewrite -> prepare -> forward -> respond | fail

``resolve`` answers 404/503 itself when there is nothing to forward to.
Request failures land in ``fail``, which reports the service as unhealthy
to the registry and maps the error code to a client response.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.errors import utc_timestamp
from shared.logging import generate_correlation_id, get_logger
from shared.metrics import MetricsCollector

from ..registry import RouteMatch, ServiceRegistry, ServiceStatus
from ..upstream import classify_transport_error, failure_response_for

CORRELATION_HEADER = "X-Correlation-ID"
RESPONSE_TIME_HEADER = "X-Gateway-Response-Time"
SERVICE_NAME_HEADER = "X-Service-Name"
SOURCE_HEADER = "X-Gateway-Source"
TIMESTAMP_HEADER = "X-Gateway-Timestamp"

# Prefix stripped before forwarding, mapped to its replacement.
DEFAULT_REWRITES: Tuple[Tuple[str, str], ...] = (
    ("/api/auth", "/auth"),
    ("/api/products", "/products"),
    ("/api/categories", "/categories"),
    ("/api/manager", ""),
    ("/api/admin", ""),
    ("/api/cart", ""),
)

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Never taken from the client; set by the gateway after authentication.
IDENTITY_HEADERS = frozenset({"x-user-id", "x-user-role", "x-user-email"})

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def rewrite_path(path: str, rewrites: Iterable[Tuple[str, str]] = DEFAULT_REWRITES) -> str:
    """Replace the longest matching public prefix with its internal form."""
    for prefix, replacement in sorted(rewrites, key=lambda item: len(item[0]), reverse=True):
        if path.startswith(prefix):
            rewritten = re.sub(f"^{re.escape(prefix)}", replacement, path, count=1)
            return rewritten if rewritten.startswith("/") else f"/{rewritten}"
    return path


@dataclass
class ProxyContext:
    """State carried through one pass of the proxy pipeline."""

    request: Request
    correlation_id: str
    started_at: float = field(default_factory=time.perf_counter)
    match: Optional[RouteMatch] = None
    upstream_path: str = ""
    target_url: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Optional[bytes] = None
    upstream_response: Optional[httpx.Response] = None

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    @property
    def service_name(self) -> str:
        if self.match and self.match.service:
            return self.match.service.name
        return "unknown"


class ProxyRouter:
    """Forward requests to the service that owns their path prefix."""

    def __init__(
        self,
        registry: ServiceRegistry,
        http_client: httpx.AsyncClient,
        timeout_ms: int = 30000,
        rewrites: Iterable[Tuple[str, str]] = DEFAULT_REWRITES,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.http_client = http_client
        self.timeout = timeout_ms / 1000
        self.rewrites = tuple(rewrites)
        self.metrics = metrics
        self.logger = get_logger("gateway.proxy")

    async def handle(self, request: Request) -> Response:
        correlation_id = (
            getattr(request.state, "correlation_id", None)
            or request.headers.get(CORRELATION_HEADER)
            or generate_correlation_id()
        )
        ctx = ProxyContext(request=request, correlation_id=correlation_id)

        unresolved = self.resolve(ctx)
        if unresolved is not None:
            return unresolved

        self.rewrite(ctx)
        await self.prepare(ctx)
        try:
            await self.forward(ctx)
        except httpx.RequestError as exc:
            return self.fail(ctx, exc)
        return self.respond(ctx)

    def resolve(self, ctx: ProxyContext) -> Optional[Response]:
        """Find the target service, or produce the 404/503 response."""
        path = ctx.request.url.path
        match = self.registry.find_service_for_path(path)

        if match is None:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "message": "Route not found",
                    "path": path,
                    "availableRoutes": self.registry.route_table.prefixes(),
                },
            )

        if match.service is None:
            self.logger.warning("Service not registered", service=match.key.value, path=path)
            return JSONResponse(
                status_code=503,
                content={
                    "success": False,
                    "message": "Service not available",
                    "service": match.key.value,
                },
            )

        if match.service.status is ServiceStatus.UNHEALTHY:
            self.logger.warning(
                "Routing to unhealthy service",
                service=match.service.name,
                status=match.service.status.value,
                path=path,
            )

        ctx.match = match
        return None

    def rewrite(self, ctx: ProxyContext) -> None:
        ctx.upstream_path = rewrite_path(ctx.request.url.path, self.rewrites)
        query = ctx.request.url.query
        ctx.target_url = f"{ctx.match.service.base_url}{ctx.upstream_path}"
        if query:
            ctx.target_url = f"{ctx.target_url}?{query}"

    async def prepare(self, ctx: ProxyContext) -> None:
        """Build outbound headers and body."""
        request = ctx.request
        headers = httpx.Headers([
            (name, value)
            for name, value in request.headers.items()
            if name not in HOP_BY_HOP_HEADERS
            and name not in IDENTITY_HEADERS
            and name not in ("host", "content-length")
        ])
        headers[CORRELATION_HEADER] = ctx.correlation_id
        headers[SOURCE_HEADER] = "api-gateway"
        headers[TIMESTAMP_HEADER] = utc_timestamp()

        if request.client:
            forwarded = request.headers.get("x-forwarded-for")
            headers["x-forwarded-for"] = f"{forwarded}, {request.client.host}" if forwarded else request.client.host

        user_info = getattr(request.state, "user_info", None)
        if user_info:
            headers["X-User-Id"] = str(user_info.get("id", ""))
            headers["X-User-Role"] = str(user_info.get("role", ""))
            headers["X-User-Email"] = str(user_info.get("email", ""))

        body = await request.body()
        if request.method in BODY_METHODS and body:
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    payload = json.loads(body)
                except ValueError:
                    pass
                else:
                    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
                    headers["content-type"] = "application/json"

        ctx.headers = headers
        ctx.body = body or None

    async def forward(self, ctx: ProxyContext) -> None:
        self.logger.info(
            "Proxying request",
            method=ctx.request.method,
            path=ctx.request.url.path,
            target=ctx.target_url,
            service=ctx.service_name,
        )
        ctx.upstream_response = await self.http_client.request(
            ctx.request.method,
            ctx.target_url,
            headers=ctx.headers,
            content=ctx.body,
            timeout=self.timeout,
        )

    def respond(self, ctx: ProxyContext) -> Response:
        """Relay the downstream response with the gateway headers added."""
        upstream = ctx.upstream_response
        response = Response(content=upstream.content, status_code=upstream.status_code)
        for name, value in self._response_headers(upstream):
            response.headers.append(name, value)

        elapsed = ctx.elapsed_ms
        response.headers[RESPONSE_TIME_HEADER] = f"{elapsed}ms"
        response.headers[SERVICE_NAME_HEADER] = ctx.service_name

        self._record(ctx, str(upstream.status_code // 100) + "xx")
        self.logger.info(
            "Proxy response",
            method=ctx.request.method,
            path=ctx.request.url.path,
            status_code=upstream.status_code,
            service=ctx.service_name,
            duration_ms=elapsed,
        )
        return response

    def fail(self, ctx: ProxyContext, exc: Exception) -> Response:
        """Map a transport failure to a client response and report it."""
        code = classify_transport_error(exc)
        status_code, message = failure_response_for(code)
        request_line = f"{ctx.request.method} {ctx.request.url.path}"

        self.logger.error(
            "Proxy error",
            service=ctx.service_name,
            request=request_line,
            code=code,
            error=str(exc),
        )
        self.registry.mark_service_unhealthy(
            ctx.match.key,
            message=str(exc) or type(exc).__name__,
            code=code,
            request=request_line,
        )
        self._record(ctx, "error")

        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "message": message,
                "error": {
                    "code": code,
                    "service": ctx.service_name,
                    "timestamp": utc_timestamp(),
                },
            },
            headers={SERVICE_NAME_HEADER: ctx.service_name},
        )

    def _response_headers(self, upstream: httpx.Response) -> List[Tuple[str, str]]:
        # httpx has already decoded the body, so encoding and length are recomputed
        skipped = HOP_BY_HOP_HEADERS | {"content-encoding", "content-length"}
        return [(name, value) for name, value in upstream.headers.multi_items() if name.lower() not in skipped]

    def _record(self, ctx: ProxyContext, outcome: str) -> None:
        if self.metrics is None:
            return
        self.metrics.increment_counter("proxy_requests_total", service=ctx.service_name, outcome=outcome)
        self.metrics.observe_histogram(
            "proxy_request_duration_seconds",
            time.perf_counter() - ctx.started_at,
            service=ctx.service_name,
        )
