"""
Unit tests for Gateway rate limiting.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from service_gateway.app.ratelimit import (
    MemorySlidingWindowLimiter,
    RateLimitPolicies,
    RateLimitPolicy,
    RedisSlidingWindowLimiter,
    create_rate_limiter,
)
from shared.test_helpers import mock_token_generator

POLICY = RateLimitPolicy(name="test", window_ms=1000, max_requests=2, message="slow down")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemorySlidingWindowLimiter:
    """Test cases for MemorySlidingWindowLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def limiter(self, clock):
        return MemorySlidingWindowLimiter(clock=clock)

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, limiter):
        first = await limiter.hit("10.0.0.1", POLICY)
        second = await limiter.hit("10.0.0.1", POLICY)
        third = await limiter.hit("10.0.0.1", POLICY)

        assert first.allowed and first.remaining == 1
        assert second.allowed and second.remaining == 0
        assert not third.allowed
        assert third.limit == 2

    @pytest.mark.asyncio
    async def test_window_slides(self, limiter, clock):
        await limiter.hit("10.0.0.1", POLICY)
        clock.now += 0.1
        await limiter.hit("10.0.0.1", POLICY)
        clock.now += 0.1
        assert not (await limiter.hit("10.0.0.1", POLICY)).allowed

        # Only the first hit has left the window; rejected hits still count
        clock.now += 0.85
        assert not (await limiter.hit("10.0.0.1", POLICY)).allowed

        clock.now += 1.5
        decision = await limiter.hit("10.0.0.1", POLICY)
        assert decision.allowed
        assert decision.reset_in_seconds == 1

    @pytest.mark.asyncio
    async def test_clients_are_independent(self, limiter):
        await limiter.hit("10.0.0.1", POLICY)
        await limiter.hit("10.0.0.1", POLICY)

        assert (await limiter.hit("10.0.0.2", POLICY)).allowed

    @pytest.mark.asyncio
    async def test_release_forgets_hit(self, limiter):
        decision = await limiter.hit("10.0.0.1", POLICY)
        await limiter.release("10.0.0.1", POLICY, decision.hit_id)

        assert (await limiter.hit("10.0.0.1", POLICY)).remaining == 1

    @pytest.mark.asyncio
    async def test_release_of_last_hit_drops_key(self, limiter):
        decision = await limiter.hit("10.0.0.1", POLICY)
        await limiter.release("10.0.0.1", POLICY, decision.hit_id)

        assert limiter.tracked_keys == 0

    @pytest.mark.asyncio
    async def test_idle_clients_are_swept(self, limiter, clock):
        for i in range(1000):
            await limiter.hit(f"10.0.{i // 256}.{i % 256}", POLICY)
        assert limiter.tracked_keys == 1000

        clock.now += 3600
        await limiter.hit("192.168.1.1", POLICY)

        assert limiter.tracked_keys == 1

    @pytest.mark.asyncio
    async def test_sweep_keeps_active_clients(self, limiter, clock):
        await limiter.hit("10.0.0.1", POLICY)
        clock.now += 0.5
        await limiter.hit("10.0.0.2", POLICY)

        clock.now += 0.6
        decision = await limiter.hit("10.0.0.3", POLICY)

        assert decision.allowed
        assert limiter.tracked_keys == 2
        assert (await limiter.hit("10.0.0.2", POLICY)).remaining == 0

    @pytest.mark.asyncio
    async def test_reset(self, limiter):
        await limiter.hit("10.0.0.1", POLICY)
        await limiter.hit("10.0.0.1", POLICY)
        await limiter.reset("10.0.0.1", POLICY)

        assert (await limiter.hit("10.0.0.1", POLICY)).allowed


class TestRedisSlidingWindowLimiter:
    """Test cases for RedisSlidingWindowLimiter."""

    @pytest.fixture
    def mock_redis(self):
        redis_client = MagicMock()
        pipeline = MagicMock()
        pipeline.execute = AsyncMock()
        redis_client.pipeline.return_value.__aenter__.return_value = pipeline
        redis_client.zrem = AsyncMock()
        redis_client.aclose = AsyncMock()
        return redis_client

    @pytest.fixture
    def limiter(self, mock_redis):
        return RedisSlidingWindowLimiter("redis://localhost:6379/0", client=mock_redis)

    def _pipeline(self, mock_redis):
        return mock_redis.pipeline.return_value.__aenter__.return_value

    @pytest.mark.asyncio
    async def test_allowed(self, limiter, mock_redis):
        self._pipeline(mock_redis).execute.return_value = [0, 1, 1, [(b"hit", 1.0)], True]

        decision = await limiter.hit("10.0.0.1", POLICY)

        assert decision.allowed
        assert decision.remaining == 1
        pipeline = self._pipeline(mock_redis)
        pipeline.zadd.assert_called_once()
        pipeline.pexpire.assert_called_once_with("rate_limit:test:10.0.0.1", 1000)

    @pytest.mark.asyncio
    async def test_rejected(self, limiter, mock_redis):
        self._pipeline(mock_redis).execute.return_value = [0, 1, 3, [(b"hit", 1.0)], True]

        decision = await limiter.hit("10.0.0.1", POLICY)

        assert not decision.allowed
        assert decision.remaining == 0

    @pytest.mark.asyncio
    async def test_fails_open(self, limiter, mock_redis):
        mock_redis.pipeline.side_effect = ConnectionError("Redis unavailable")

        decision = await limiter.hit("10.0.0.1", POLICY)

        assert decision.allowed
        assert decision.remaining == POLICY.max_requests

    @pytest.mark.asyncio
    async def test_release(self, limiter, mock_redis):
        await limiter.release("10.0.0.1", POLICY, "hit-1")

        mock_redis.zrem.assert_awaited_once_with("rate_limit:test:10.0.0.1", "hit-1")

    @pytest.mark.asyncio
    async def test_close(self, limiter, mock_redis):
        await limiter.close()
        mock_redis.aclose.assert_awaited_once()


class TestRateLimitPolicies:
    """Test cases for path based policy selection."""

    @pytest.fixture
    def policies(self, make_config):
        return RateLimitPolicies.from_config(make_config())

    @pytest.mark.parametrize("path, name", [
        ("/api/auth/login", "auth"),
        ("/api/products/1", "products"),
        ("/api/categories", "products"),
        ("/api/manager/products", "general"),
        ("/api/nonexistent", "general"),
    ])
    def test_policy_for_path(self, policies, path, name):
        assert policies.for_path(path).name == name

    def test_non_api_paths_are_not_limited(self, policies):
        assert policies.for_path("/health") is None
        assert policies.for_path("/") is None

    def test_defaults(self, policies):
        assert (policies.auth.window_ms, policies.auth.max_requests) == (900000, 5)
        assert policies.auth.skip_successful_requests
        assert (policies.products.window_ms, policies.products.max_requests) == (60000, 60)
        assert (policies.general.window_ms, policies.general.max_requests) == (900000, 100)

    def test_backend_selection(self, make_config):
        assert isinstance(create_rate_limiter(make_config()), MemorySlidingWindowLimiter)
        assert isinstance(create_rate_limiter(make_config(rate_limit_backend="redis")), RedisSlidingWindowLimiter)
        with pytest.raises(ValueError):
            create_rate_limiter(make_config(rate_limit_backend="memcached"))


class TestRateLimitMiddleware:
    """Test cases for rate limiting through the gateway."""

    def test_auth_attempts_are_limited(self, client, stub):
        stub.route("auth-service", lambda request: httpx.Response(
            401, json={"success": False, "message": "Invalid email or password"}
        ))
        credentials = {"email": "admin@ferremas.cl", "password": "wrong"}

        statuses = [client.post("/api/auth/login", json=credentials).status_code for _ in range(5)]
        response = client.post("/api/auth/login", json=credentials)

        assert statuses == [401] * 5
        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "message": "Too many authentication attempts, please try again later",
            "retryAfter": 900,
        }
        assert response.headers["Retry-After"] == "900"
        assert response.headers["RateLimit-Limit"] == "5"
        assert response.headers["RateLimit-Remaining"] == "0"
        assert len(stub.calls_to("auth-service")) == 5

    def test_successful_auth_requests_are_not_counted(self, client):
        for _ in range(8):
            response = client.post("/api/auth/login", json={"email": "admin@ferremas.cl", "password": "ok"})
            assert response.status_code == 200

    def test_product_limit(self, make_service):
        client = TestClient(make_service(product_rate_limit_max_requests=3).app)

        statuses = [client.get("/api/products").status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]
        assert client.get("/api/categories").json()["message"] == "Too many product requests, please slow down"

    def test_general_limit(self, make_service):
        client = TestClient(make_service(rate_limit_max_requests=2, rate_limit_window_ms=60000).app)

        client.get("/api/nonexistent")
        client.get("/api/nonexistent")
        response = client.get("/api/nonexistent")

        assert response.status_code == 429
        assert response.json()["message"] == "Too many requests from this IP, please try again later"
        assert response.json()["retryAfter"] == 60

    def test_headers_on_allowed_requests(self, client):
        response = client.get("/api/products")

        assert response.headers["RateLimit-Limit"] == "60"
        assert response.headers["RateLimit-Remaining"] == "59"
        assert "RateLimit-Reset" in response.headers

    def test_spoofed_forwarded_for_shares_the_budget(self, make_service):
        client = TestClient(make_service(product_rate_limit_max_requests=1).app)

        assert client.get("/api/products", headers={"X-Forwarded-For": "200.1.1.1"}).status_code == 200
        assert client.get("/api/products", headers={"X-Forwarded-For": "200.1.1.2"}).status_code == 429
        assert client.get("/api/products", headers={"X-Real-IP": "200.1.1.3"}).status_code == 429

    def test_rotating_forwarded_for_cannot_bypass_login_limit(self, client, stub):
        stub.route("auth-service", lambda request: httpx.Response(
            401, json={"success": False, "message": "Invalid email or password"}
        ))
        credentials = {"email": "admin@ferremas.cl", "password": "wrong"}

        statuses = [
            client.post("/api/auth/login", json=credentials,
                        headers={"X-Forwarded-For": f"10.0.0.{n}"}).status_code
            for n in range(8)
        ]

        assert statuses == [401] * 5 + [429] * 3

    def test_trusted_proxy_address_is_the_key(self, make_service):
        app = ProxyHeadersMiddleware(make_service(product_rate_limit_max_requests=1).app, trusted_hosts="*")
        client = TestClient(app)

        assert client.get("/api/products", headers={"X-Forwarded-For": "200.1.1.1"}).status_code == 200
        assert client.get("/api/products", headers={"X-Forwarded-For": "200.1.1.1"}).status_code == 429
        assert client.get("/api/products", headers={"X-Forwarded-For": "200.1.1.2"}).status_code == 200

    def test_authenticated_users_have_own_budget(self, make_service, users):
        client = TestClient(make_service(product_rate_limit_max_requests=1).app)

        assert client.get("/api/products").status_code == 200
        assert client.get("/api/products").status_code == 429
        response = client.get("/api/products", headers=mock_token_generator.auth_header(users["customer"]))
        assert response.status_code == 200

    def test_health_is_not_limited(self, make_service):
        client = TestClient(make_service(rate_limit_max_requests=1).app)

        assert all(client.get("/health").status_code == 200 for _ in range(3))

    def test_rejections_are_counted(self, make_service):
        service = make_service(product_rate_limit_max_requests=1)
        client = TestClient(service.app)

        client.get("/api/products")
        client.get("/api/products")

        value = service.metrics.registry.get_sample_value("rate_limit_hits_total", {"policy": "products"})
        assert value == 1.0
