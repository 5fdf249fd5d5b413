"""
Fixtures for Auth service tests.
"""

from functools import lru_cache

import pytest
from fastapi.testclient import TestClient

from service_auth.app.main import AuthService
from service_auth.app.passwords import hash_password
from service_auth.app.persistence import InMemorySessionRepository, InMemoryUserRepository, User
from service_auth.app.tokens import TokenService
from shared.config import get_config
from shared.test_helpers import test_data_factory, test_environment


@lru_cache(maxsize=None)
def _password_hash(password: str) -> str:
    return hash_password(password)


@pytest.fixture
def config():
    return get_config("auth", 3001, **test_environment.get_mock_config())


@pytest.fixture
def users():
    """User repository seeded with the demo admin, manager and customer."""
    repository = InMemoryUserRepository()
    for seed in test_data_factory.create_test_users():
        repository.add(User(
            id=seed.id,
            name=seed.name,
            lastname=seed.lastname,
            email=seed.email,
            role_id=seed.role_id,
            password_hash=_password_hash(seed.password),
            active=seed.active,
        ))
    return repository


@pytest.fixture
def sessions(users):
    return InMemorySessionRepository(users)


@pytest.fixture
def token_service(sessions, config):
    return TokenService(sessions, config)


@pytest.fixture
def admin(users):
    return users.users["550e8400-e29b-41d4-a716-446655440001"]


@pytest.fixture
def service(config, users, sessions):
    return AuthService(config=config, users=users, sessions=sessions)


@pytest.fixture
def client(service):
    """Create test client."""
    return TestClient(service.app)
