"""
Unit tests for the gateway auth guard.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from service_gateway.app.middleware import GatewayAuthGuard
from shared.test_helpers import create_mock_jwt_token, create_mock_user, mock_token_generator


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestRequiredRoles:
    """Test cases for route protection rules."""

    @pytest.fixture
    def guard(self):
        return GatewayAuthGuard(auth_client=None, jwt_secret="secret")

    @pytest.mark.parametrize("path, roles", [
        ("/api/manager/products", ("manager", "admin")),
        ("/api/admin/users", ("admin",)),
        ("/api/cart/items", ()),
        ("/api/products", None),
        ("/api/auth/login", None),
    ])
    def test_required_roles(self, guard, path, roles):
        assert guard.required_roles(path) == roles


class TestLocalVerification:
    """Test cases for the guard with local token verification."""

    def test_public_routes_need_no_token(self, client):
        assert client.get("/api/products").status_code == 200

    def test_missing_token(self, client, stub):
        response = client.get("/api/admin/users")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "Access token required",
            "error": {"code": "MISSING_TOKEN"},
        }
        assert stub.calls_to("admin-service") == []

    def test_malformed_header(self, client):
        response = client.get("/api/admin/users", headers={"Authorization": "Token abc"})
        assert response.json()["error"]["code"] == "MISSING_TOKEN"

    def test_expired_token(self, client, users):
        token = mock_token_generator.generate_access_token(users["admin"], expires_in=-60)

        response = client.get("/api/admin/users", headers=bearer(token))

        assert response.status_code == 401
        body = response.json()
        assert body["message"] == "Authentication failed"
        assert body["error"] == {"code": "TOKEN_EXPIRED", "message": "Token expired"}

    def test_bad_signature(self, client, users):
        token = create_mock_jwt_token(users["admin"], secret="another-secret")

        response = client.get("/api/admin/users", headers=bearer(token))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_refresh_token_is_rejected(self, client, users):
        token = mock_token_generator.generate_access_token(users["admin"], type="refresh")

        response = client.get("/api/admin/users", headers=bearer(token))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_insufficient_role(self, client, users):
        response = client.get("/api/admin/users", headers=mock_token_generator.auth_header(users["manager"]))

        assert response.status_code == 403
        assert response.json() == {
            "success": False,
            "message": "Insufficient permissions",
            "error": {
                "code": "INSUFFICIENT_PERMISSIONS",
                "required": ["admin"],
                "current": "manager",
            },
        }

    @pytest.mark.parametrize("role", ["manager", "admin"])
    def test_manager_routes(self, client, users, role):
        response = client.get("/api/manager/products", headers=mock_token_generator.auth_header(users[role]))
        assert response.status_code == 200

    def test_customer_cannot_use_manager_routes(self, client, users):
        response = client.get("/api/manager/products", headers=mock_token_generator.auth_header(users["customer"]))
        assert response.status_code == 403

    def test_identity_headers_are_forwarded(self, client, stub, users):
        admin = users["admin"]

        response = client.get("/api/admin/users", headers=mock_token_generator.auth_header(admin))

        assert response.status_code == 200
        call = stub.calls_to("admin-service")[-1]
        assert call.path == "/users"
        assert call.headers["x-user-id"] == admin.id
        assert call.headers["x-user-role"] == "admin"
        assert call.headers["x-user-email"] == "admin@ferremas.cl"
        assert call.headers["authorization"].startswith("Bearer ")


class TestServiceVerification:
    """Test cases for verification through the auth service."""

    @pytest.fixture
    def client(self, make_service):
        return TestClient(make_service(auth_verification_method="service").app)

    def test_verified_by_auth_service(self, client, stub, users):
        admin = users["admin"]

        def auth_service(request):
            assert request.url.path == "/auth/verify"
            return httpx.Response(200, json={
                "success": True,
                "message": "Token is valid",
                "data": {"user": {"id": admin.id, "email": admin.email, "role": "admin"}},
            })
        stub.route("auth-service", auth_service)

        response = client.get("/api/admin/users", headers=bearer("opaque-token"))

        assert response.status_code == 200
        verify_call = stub.calls_to("auth-service")[-1]
        assert verify_call.method == "POST"
        assert verify_call.headers["authorization"] == "Bearer opaque-token"
        assert stub.calls_to("admin-service")[-1].headers["x-user-id"] == admin.id

    def test_rejected_by_auth_service(self, client, stub):
        stub.route("auth-service", lambda request: httpx.Response(401, json={
            "success": False,
            "message": "Token expired",
            "error": {"code": "TOKEN_EXPIRED"},
        }))

        response = client.get("/api/admin/users", headers=bearer("expired"))

        assert response.status_code == 401
        assert response.json()["error"] == {"code": "TOKEN_EXPIRED", "message": "Token expired"}

    def test_falls_back_to_local_when_refused(self, client, stub, users):
        stub.refuse("auth-service")

        response = client.get("/api/admin/users", headers=mock_token_generator.auth_header(users["admin"]))

        assert response.status_code == 200
        assert len(stub.calls_to("auth-service")) == 1

    def test_fallback_still_checks_the_token(self, client, stub):
        stub.refuse("auth-service")

        response = client.get("/api/admin/users", headers=bearer("garbage"))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_no_fallback_on_timeout(self, client, stub, users):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)
        stub.route("auth-service", slow)

        response = client.get("/api/admin/users", headers=mock_token_generator.auth_header(users["admin"]))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_SERVICE_ERROR"

    def test_cart_accepts_any_authenticated_user(self, make_service, stub):
        stub.route("cart-service", lambda request: httpx.Response(200, json={"success": True}))
        client = TestClient(make_service(cart_service_enabled=True).app)
        customer = create_mock_user("customer")

        response = client.get("/api/cart", headers=mock_token_generator.auth_header(customer))

        assert response.status_code == 200
        assert stub.calls_to("cart-service")[-1].path == "/"
