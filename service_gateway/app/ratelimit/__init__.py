"""
Rate limiting package for the Gateway.

Holds sliding window limiters (in-process and Redis backed) and the
middleware that picks a request budget from the request path.
"""

from .middleware import (
    RateLimitMiddleware,
    RateLimitPolicies,
    create_rate_limiter,
    get_client_ip,
)
from .sliding_window import (
    MemorySlidingWindowLimiter,
    RateLimitDecision,
    RateLimitPolicy,
    RedisSlidingWindowLimiter,
)

__all__ = [
    "MemorySlidingWindowLimiter",
    "RateLimitDecision",
    "RateLimitMiddleware",
    "RateLimitPolicies",
    "RateLimitPolicy",
    "RedisSlidingWindowLimiter",
    "create_rate_limiter",
    "get_client_ip",
]
