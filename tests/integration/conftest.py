"""
Fixtures wiring the gateway to a live auth service.

The auth service runs in-process behind ``httpx.ASGITransport``; every other
downstream service is a ``DownstreamStub`` host.
"""

from functools import lru_cache

import httpx
import pytest
from fastapi.testclient import TestClient

from service_auth.app.main import AuthService
from service_auth.app.passwords import hash_password
from service_auth.app.persistence import InMemorySessionRepository, InMemoryUserRepository, User
from service_gateway.app.main import GatewayService
from shared.config import get_config
from shared.test_helpers import DownstreamStub, test_data_factory, test_environment


class HostRoutingTransport(httpx.AsyncBaseTransport):
    """Send each request to the transport registered for its host."""

    def __init__(self, routes, default: httpx.AsyncBaseTransport):
        self.routes = routes
        self.default = default

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        transport = self.routes.get(request.url.host, self.default)
        return await transport.handle_async_request(request)


@lru_cache(maxsize=None)
def _password_hash(password: str) -> str:
    return hash_password(password)


def _echo(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={
        "success": True,
        "data": {
            "path": request.url.path,
            "userId": request.headers.get("x-user-id"),
            "userRole": request.headers.get("x-user-role"),
        },
    })


@pytest.fixture
def auth_service():
    users = InMemoryUserRepository()
    for seed in test_data_factory.create_test_users():
        users.add(User(
            id=seed.id,
            name=seed.name,
            lastname=seed.lastname,
            email=seed.email,
            role_id=seed.role_id,
            password_hash=_password_hash(seed.password),
            active=seed.active,
        ))
    config = get_config("auth", 3001, **test_environment.get_mock_config())
    return AuthService(config=config, users=users, sessions=InMemorySessionRepository(users))


@pytest.fixture
def stub():
    downstream = DownstreamStub()
    for host in ("product-service", "manager-service", "admin-service"):
        downstream.route(host, _echo)
    return downstream


@pytest.fixture
def make_gateway(auth_service, stub):
    def factory(**overrides):
        transport = HostRoutingTransport(
            {"auth-service": httpx.ASGITransport(app=auth_service.app)},
            default=stub.transport(),
        )
        config = get_config("gateway", 3000, **test_environment.get_mock_config(**overrides))
        return GatewayService(config=config, transport=transport)
    return factory


@pytest.fixture
def gateway(make_gateway):
    return TestClient(make_gateway().app)


@pytest.fixture
def login(gateway):
    def perform(email="admin@ferremas.cl", password="password123", client=None):
        response = (client or gateway).post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()["data"]
    return perform
