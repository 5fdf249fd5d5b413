"""
Auth service client for Gateway.
"""

from typing import Any, Dict

import httpx

from shared.errors import AuthenticationError, UpstreamUnavailableError
from shared.logging import get_logger

from ..upstream import classify_transport_error


class AuthClient:
    """Client for communicating with Auth service."""

    def __init__(self, auth_service_url: str, http_client: httpx.AsyncClient, timeout: float = 5.0):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.http_client = http_client
        self.timeout = timeout
        self.logger = get_logger("gateway.auth_client")

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify an access token with ``POST /auth/verify`` and return the user.

        Raises ``UpstreamUnavailableError`` (with the transport error code)
        when the auth service cannot be reached, and ``AuthenticationError``
        when it rejects the token.
        """
        try:
            response = await self.http_client.post(
                f"{self.auth_service_url}/auth/verify",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            code = classify_transport_error(e)
            self.logger.error("Auth service HTTP error", error=str(e), code=code)
            raise UpstreamUnavailableError("auth-service", str(e) or "Auth service unavailable", code=code) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        user = (body.get("data") or {}).get("user")
        if response.status_code == 200 and body.get("success") and user:
            return user

        error = body.get("error") or {}
        self.logger.warning(
            "Token validation failed",
            status_code=response.status_code,
            error=body.get("message"),
        )
        raise AuthenticationError(
            body.get("message") or f"Auth service error: {response.status_code}",
            code=error.get("code") or "AUTH_SERVICE_ERROR",
        )
