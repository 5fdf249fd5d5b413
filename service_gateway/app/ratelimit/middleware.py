"""
Path-based rate limiting middleware.
"""

from dataclasses import dataclass
from typing import Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tokens import ACCESS_TOKEN_TYPE, check_token

from .sliding_window import (
    MemorySlidingWindowLimiter,
    RateLimitDecision,
    RateLimitPolicy,
    RedisSlidingWindowLimiter,
)

Limiter = Union[MemorySlidingWindowLimiter, RedisSlidingWindowLimiter]


@dataclass(frozen=True)
class RateLimitPolicies:
    auth: RateLimitPolicy
    products: RateLimitPolicy
    general: RateLimitPolicy

    @classmethod
    def from_config(cls, config) -> "RateLimitPolicies":
        return cls(
            auth=RateLimitPolicy(
                name="auth",
                window_ms=config.auth_rate_limit_window_ms,
                max_requests=config.auth_rate_limit_max_requests,
                message="Too many authentication attempts, please try again later",
                skip_successful_requests=True,
            ),
            products=RateLimitPolicy(
                name="products",
                window_ms=config.product_rate_limit_window_ms,
                max_requests=config.product_rate_limit_max_requests,
                message="Too many product requests, please slow down",
            ),
            general=RateLimitPolicy(
                name="general",
                window_ms=config.rate_limit_window_ms,
                max_requests=config.rate_limit_max_requests,
                message="Too many requests from this IP, please try again later",
            ),
        )

    def for_path(self, path: str) -> Optional[RateLimitPolicy]:
        """Policy for ``path``; None outside ``/api``."""
        if path.startswith("/api/auth"):
            return self.auth
        if path.startswith("/api/products") or path.startswith("/api/categories"):
            return self.products
        if path == "/api" or path.startswith("/api/"):
            return self.general
        return None


def create_rate_limiter(config) -> Limiter:
    """Limiter for ``RATE_LIMIT_BACKEND`` (``memory`` or ``redis``)."""
    backend = config.rate_limit_backend.lower()
    if backend == "redis":
        return RedisSlidingWindowLimiter(config.redis_url)
    if backend != "memory":
        raise ValueError(f"Unsupported rate limit backend: {config.rate_limit_backend}")
    return MemorySlidingWindowLimiter()


def get_client_ip(request: Request) -> str:
    """Peer address of the connection.

    Forwarding headers are not read here. Behind a load balancer, uvicorn's
    proxy header handling (``FORWARDED_ALLOW_IPS``) rewrites the peer address
    for trusted proxies only.
    """
    if request.client:
        return request.client.host
    return "unknown"


def set_rate_limit_headers(response, decision: RateLimitDecision) -> None:
    """Propagate rate limiting metadata via the standard ``RateLimit-*`` headers."""
    response.headers["RateLimit-Limit"] = str(decision.limit)
    response.headers["RateLimit-Remaining"] = str(decision.remaining)
    response.headers["RateLimit-Reset"] = str(decision.reset_in_seconds)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the policy matching the request path before it reaches the router."""

    def __init__(self, app, limiter: Limiter, policies: RateLimitPolicies,
                 jwt_secret: str, jwt_algorithm: str = "HS256",
                 metrics: Optional[MetricsCollector] = None):
        super().__init__(app)
        self.limiter = limiter
        self.policies = policies
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limit_middleware")

    def _get_client_id(self, request: Request) -> str:
        """Client IP, suffixed with the user ID when a valid bearer token is sent."""
        client_ip = get_client_ip(request)
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            verification = check_token(
                authorization[len("Bearer "):],
                self.jwt_secret,
                token_type=ACCESS_TOKEN_TYPE,
                algorithm=self.jwt_algorithm,
            )
            if verification.valid and verification.claims.get("id"):
                return f"{client_ip}:{verification.claims['id']}"
        return client_ip

    async def dispatch(self, request: Request, call_next):
        policy = self.policies.for_path(request.url.path)
        if policy is None:
            return await call_next(request)

        client_id = self._get_client_id(request)
        decision = await self.limiter.hit(client_id, policy)

        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                policy=policy.name,
                method=request.method,
                path=request.url.path,
                limit=decision.limit,
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", policy=policy.name)
            response = JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "message": policy.message,
                    "retryAfter": policy.retry_after,
                },
                headers={"Retry-After": str(policy.retry_after)},
            )
            set_rate_limit_headers(response, decision)
            return response

        response = await call_next(request)
        if policy.skip_successful_requests and response.status_code < 400 and decision.hit_id:
            await self.limiter.release(client_id, policy, decision.hit_id)
        set_rate_limit_headers(response, decision)
        return response
