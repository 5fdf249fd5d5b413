"""
Fixtures for Gateway service tests.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from service_gateway.app.main import GatewayService
from shared.config import get_config
from shared.test_helpers import DownstreamStub, test_data_factory, test_environment

DOWNSTREAM_HOSTS = ("auth-service", "product-service", "manager-service", "admin-service")


def echo(request: httpx.Request) -> httpx.Response:
    """Downstream handler answering with what it received."""
    return httpx.Response(200, json={
        "success": True,
        "data": {"method": request.method, "path": request.url.path},
    })


@pytest.fixture
def stub():
    """Every downstream service healthy and echoing requests."""
    downstream = DownstreamStub()
    for host in DOWNSTREAM_HOSTS:
        downstream.route(host, echo)
    return downstream


@pytest.fixture
def make_config():
    def factory(**overrides):
        return get_config("gateway", 3000, **test_environment.get_mock_config(**overrides))
    return factory


@pytest.fixture
def make_service(stub, make_config):
    def factory(**overrides):
        return GatewayService(config=make_config(**overrides), transport=stub.transport())
    return factory


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def client(service):
    """Create test client."""
    return TestClient(service.app)


@pytest.fixture
def users():
    """Demo admin, manager and customer keyed by role."""
    return {user.role: user for user in test_data_factory.create_test_users()}
