"""
Route-level authentication for proxied paths.

Manager, admin and cart routes require a bearer token. Tokens are checked
locally with the shared signing secret or, when configured, by the auth
service, falling back to local verification if the auth service cannot be
reached at all.
"""

from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse

from shared.errors import AuthenticationError, UpstreamUnavailableError
from shared.logging import get_logger, set_user_context
from shared.tokens import ACCESS_TOKEN_TYPE, check_token

from ..adapters.auth_client import AuthClient
from ..upstream import ECONNREFUSED, ENOTFOUND

# Prefix -> roles allowed; an empty tuple admits any authenticated user.
ROUTE_ROLES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("/api/manager", ("manager", "admin")),
    ("/api/admin", ("admin",)),
    ("/api/cart", ()),
)

LOCAL_FALLBACK_CODES = frozenset({ECONNREFUSED, ENOTFOUND})


class GatewayAuthGuard:
    """Authenticate and authorize requests for protected prefixes."""

    def __init__(self, auth_client: AuthClient, jwt_secret: str, jwt_algorithm: str = "HS256",
                 verification_method: str = "local"):
        self.auth_client = auth_client
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.verification_method = verification_method.lower()
        self.logger = get_logger("gateway.auth_middleware")

    def required_roles(self, path: str) -> Optional[Tuple[str, ...]]:
        """Roles for ``path``, or None when the path is public."""
        for prefix, roles in ROUTE_ROLES:
            if path.startswith(prefix):
                return roles
        return None

    async def authorize(self, request: Request) -> Optional[JSONResponse]:
        """Return an error response, or None and attach ``request.state.user_info``."""
        roles = self.required_roles(request.url.path)
        if roles is None:
            return None

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return JSONResponse(
                status_code=401,
                content={
                    "success": False,
                    "message": "Access token required",
                    "error": {"code": "MISSING_TOKEN"},
                },
            )

        try:
            user = await self.verify(auth_header[len("Bearer "):])
        except AuthenticationError as e:
            self.logger.warning("Authentication failed", path=request.url.path, code=e.code, error=e.message)
            return JSONResponse(
                status_code=401,
                content={
                    "success": False,
                    "message": "Authentication failed",
                    "error": {"code": e.code, "message": e.message},
                },
            )

        user_info = {"id": user.get("id"), "role": user.get("role"), "email": user.get("email")}
        if roles and user_info["role"] not in roles:
            self.logger.warning(
                "Insufficient permissions",
                user_id=user_info["id"],
                role=user_info["role"],
                required=list(roles),
            )
            return JSONResponse(
                status_code=403,
                content={
                    "success": False,
                    "message": "Insufficient permissions",
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "required": list(roles),
                        "current": user_info["role"],
                    },
                },
            )

        request.state.user_info = user_info
        set_user_context(user_info["id"])
        return None

    async def verify(self, token: str) -> Dict[str, Any]:
        if self.verification_method != "service":
            return self.verify_locally(token)

        try:
            return await self.auth_client.verify_token(token)
        except UpstreamUnavailableError as e:
            if e.code not in LOCAL_FALLBACK_CODES:
                raise AuthenticationError("Auth service unavailable", code="AUTH_SERVICE_ERROR") from e
            self.logger.warning("Auth service unreachable, verifying locally", code=e.code)
            return self.verify_locally(token)

    def verify_locally(self, token: str) -> Dict[str, Any]:
        verification = check_token(
            token,
            self.jwt_secret,
            token_type=ACCESS_TOKEN_TYPE,
            algorithm=self.jwt_algorithm,
        )
        if not verification.valid:
            raise AuthenticationError(verification.error, code=verification.error_code)
        return verification.claims
