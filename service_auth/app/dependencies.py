"""
Request dependencies for authenticated Auth service routes.
"""

from typing import Optional

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context

from .persistence import User, UserRepository
from .tokens import TokenService


class CurrentUser:
    """Resolve the caller from a bearer access token.

    The token must verify and the user must still exist and be active.
    """

    def __init__(self, token_service: TokenService, users: UserRepository):
        self.token_service = token_service
        self.users = users
        self.logger = get_logger("auth.dependencies")
        self.security = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> User:
        credentials: Optional[HTTPAuthorizationCredentials] = await self.security(request)
        if credentials is None:
            raise AuthenticationError("Access token is required", code="MISSING_TOKEN")

        verification = self.token_service.check_access_token(credentials.credentials)
        if not verification.valid:
            self.logger.warning("Bearer token rejected", error_code=verification.error_code)
            raise AuthenticationError("Invalid or expired access token", code=verification.error_code)

        user = await self.users.get_by_id(str(verification.claims.get("id")))
        if user is None:
            raise AuthenticationError("User not found", code="USER_NOT_FOUND")
        if not user.active:
            raise AuthenticationError("User account is inactive", code="USER_INACTIVE")

        set_user_context(user.id)
        request.state.user_info = {"id": user.id, "role": user.role_name}
        return user
