"""
Sliding window rate limiters for the Gateway service.

Both limiters count every hit inside the trailing window, rejected ones
included, and allow a request while the count stays within the policy
maximum. The Redis limiter shares counters between gateway replicas and
fails open when Redis is unreachable.
"""

import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.logging import get_logger


@dataclass(frozen=True)
class RateLimitPolicy:
    """Request budget applied to a family of paths."""

    name: str
    window_ms: int
    max_requests: int
    message: str
    skip_successful_requests: bool = False

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000

    @property
    def retry_after(self) -> int:
        return int(self.window_ms // 1000)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_in_seconds: int
    hit_id: Optional[str] = None


class MemorySlidingWindowLimiter:
    """Process-local limiter keyed by client.

    Keys whose hits have all left the window are dropped, either when their
    last hit is released or by a sweep run at most once per policy window.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._hits: Dict[str, Deque[Tuple[float, str]]] = {}
        self._last_sweep: Dict[str, float] = {}

    def _key(self, key: str, policy: RateLimitPolicy) -> str:
        return f"{policy.name}:{key}"

    def _sweep(self, policy: RateLimitPolicy, now: float) -> None:
        last = self._last_sweep.setdefault(policy.name, now)
        if now - last < policy.window_seconds:
            return
        self._last_sweep[policy.name] = now

        prefix = f"{policy.name}:"
        cutoff = now - policy.window_seconds
        stale = [
            key for key, hits in self._hits.items()
            if key.startswith(prefix) and (not hits or hits[-1][0] <= cutoff)
        ]
        for key in stale:
            del self._hits[key]

    async def hit(self, key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        now = self.clock()
        self._sweep(policy, now)

        hits = self._hits.setdefault(self._key(key, policy), deque())
        cutoff = now - policy.window_seconds
        while hits and hits[0][0] <= cutoff:
            hits.popleft()

        hit_id = uuid.uuid4().hex
        hits.append((now, hit_id))
        count = len(hits)
        reset = math.ceil(hits[0][0] + policy.window_seconds - now)

        return RateLimitDecision(
            allowed=count <= policy.max_requests,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            reset_in_seconds=max(reset, 0),
            hit_id=hit_id,
        )

    async def release(self, key: str, policy: RateLimitPolicy, hit_id: str) -> None:
        """Forget a recorded hit (successful request under a skip-successful policy)."""
        hits_key = self._key(key, policy)
        hits = self._hits.get(hits_key)
        if not hits:
            return
        for entry in hits:
            if entry[1] == hit_id:
                hits.remove(entry)
                break
        if not hits:
            del self._hits[hits_key]

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    async def reset(self, key: str, policy: RateLimitPolicy) -> None:
        self._hits.pop(self._key(key, policy), None)

    async def close(self) -> None:
        self._hits.clear()
        self._last_sweep.clear()


class RedisSlidingWindowLimiter:
    """Distributed limiter backed by one Redis sorted set per client and policy."""

    def __init__(self, redis_url: str, key_prefix: str = "rate_limit",
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.logger = get_logger("gateway.rate_limiter")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str, policy: RateLimitPolicy) -> str:
        return f"{self.key_prefix}:{policy.name}:{key}"

    def _fail_open(self, policy: RateLimitPolicy) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests,
            reset_in_seconds=policy.retry_after,
        )

    async def hit(self, key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        now_ms = int(time.time() * 1000)
        redis_key = self._make_key(key, policy)
        hit_id = f"{now_ms}-{uuid.uuid4().hex}"

        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.zremrangebyscore(redis_key, 0, now_ms - policy.window_ms)
                pipeline.zadd(redis_key, {hit_id: now_ms})
                pipeline.zcard(redis_key)
                pipeline.zrange(redis_key, 0, 0, withscores=True)
                pipeline.pexpire(redis_key, policy.window_ms)
                results = await pipeline.execute()
        except Exception as e:
            self.logger.error("Rate limit check error", error=str(e), policy=policy.name)
            return self._fail_open(policy)

        count = int(results[2])
        oldest = results[3]
        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        reset = math.ceil((oldest_ms + policy.window_ms - now_ms) / 1000)

        return RateLimitDecision(
            allowed=count <= policy.max_requests,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            reset_in_seconds=max(reset, 0),
            hit_id=hit_id,
        )

    async def release(self, key: str, policy: RateLimitPolicy, hit_id: str) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.zrem(self._make_key(key, policy), hit_id)
        except Exception as e:
            self.logger.error("Rate limit release error", error=str(e), policy=policy.name)

    async def reset(self, key: str, policy: RateLimitPolicy) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.delete(self._make_key(key, policy))
            self.logger.info("Rate limit reset", key=key, policy=policy.name)
        except Exception as e:
            self.logger.error("Rate limit reset error", error=str(e))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
