"""
Auth service for the Ferremas platform.
"""

from typing import Any, Optional

from fastapi import Body, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.database import Database
from shared.errors import (
    AuthenticationError,
    ConflictError,
    FerremasError,
    InvalidTokenError,
    TokenExpiredError,
    ValidationError,
    success_envelope,
)
from shared.logging import set_user_context
from shared.tokens import extract_bearer_token

from .dependencies import CurrentUser
from .passwords import hash_password, verify_password
from .persistence import (
    PostgresSessionRepository,
    PostgresUserRepository,
    SessionRepository,
    User,
    UserRepository,
    create_schema,
)
from .tokens import SessionCleanupTask, TokenService
from .validation import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    UpdateProfileRequest,
    parse_payload,
)

DEFAULT_PORT = 3001
DEFAULT_ROLE = "customer"


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        users: Optional[UserRepository] = None,
        sessions: Optional[SessionRepository] = None,
        database: Optional[Database] = None,
    ):
        config = config or get_config("auth", DEFAULT_PORT)

        if users is None or sessions is None:
            database = database or Database(
                config.database_url,
                min_size=config.database_pool_min_size,
                max_size=config.database_pool_max_size,
            )
            users = users or PostgresUserRepository(database)
            sessions = sessions or PostgresSessionRepository(database)

        self.database = database
        self.users = users
        self.sessions = sessions

        super().__init__("auth", DEFAULT_PORT, config=config,
                         display_name="auth-service", service_label="Auth service")

        self.token_service = TokenService(self.sessions, self.config, metrics=self.metrics)
        self.cleanup_task = SessionCleanupTask(self.token_service, self.config.session_cleanup_interval)
        self.current_user = CurrentUser(self.token_service, self.users)

        self._setup_auth_routes()

    async def on_startup(self):
        if self.database is not None:
            await self.database.start()
            await create_schema(self.database)
        await self.cleanup_task.start()
        self.logger.info("Auth service started", port=self.config.port)

    async def on_shutdown(self):
        await self.cleanup_task.stop()
        if self.database is not None:
            await self.database.stop()
        self.logger.info("Auth service stopped")

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""
        current_user = self.current_user

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "auth-service",
                "message": "Ferremas - Auth Service",
                "version": self.config.service_version
            }

        @self.app.post("/auth/register", status_code=201)
        async def register(payload: Any = Body(None)):
            """Create a customer (or explicitly roled) account and log it in."""
            data = parse_payload(RegisterRequest, payload)
            email = data.email.lower()

            if await self.users.email_exists(email):
                raise ConflictError("User with this email already exists")

            role_id = data.role_id
            if role_id is None:
                role_id = await self.users.get_role_id(DEFAULT_ROLE)
                if role_id is None:
                    raise FerremasError("ROLE_NOT_FOUND", "Customer role not found in system", status_code=500)
            elif not await self.users.role_exists(role_id):
                raise ValidationError("Invalid role specified")

            password_hash = await run_in_threadpool(hash_password, data.password)
            user = await self.users.create(data.name, data.lastname, email, password_hash, role_id)
            tokens = await self.token_service.issue_token_pair(user)

            self.logger.info("User registered", user_id=user.id, role=user.role_name)
            return JSONResponse(
                status_code=201,
                content=success_envelope(
                    {
                        "user": user.to_public(include_created_at=True),
                        "tokens": tokens.model_dump(by_alias=True),
                    },
                    message="User registered successfully",
                ),
            )

        @self.app.post("/auth/login")
        async def login(payload: Any = Body(None)):
            """Exchange email and password for a token pair."""
            data = parse_payload(LoginRequest, payload)

            user = await self.users.get_by_email(data.email.lower())
            if user is None:
                raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

            if not user.active:
                raise AuthenticationError("Account is inactive. Please contact administrator.",
                                          code="USER_INACTIVE")

            if not await run_in_threadpool(verify_password, data.password, user.password_hash):
                self.logger.warning("Failed login attempt", user_id=user.id)
                raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

            tokens = await self.token_service.issue_token_pair(user)
            set_user_context(user.id)

            return success_envelope(
                {"user": user.to_public(), "tokens": tokens.model_dump(by_alias=True)},
                message="Login successful",
            )

        @self.app.post("/auth/refresh")
        async def refresh(payload: Any = Body(None)):
            """Issue a new access token from a live refresh token."""
            data = parse_payload(RefreshRequest, payload)

            try:
                tokens = await self.token_service.refresh_access_token(data.refreshToken)
            except (InvalidTokenError, TokenExpiredError) as exc:
                raise AuthenticationError("Failed to refresh token: Invalid refresh token", code=exc.code) from exc
            except AuthenticationError as exc:
                raise AuthenticationError(f"Failed to refresh token: {exc.message}", code=exc.code) from exc

            return success_envelope({"tokens": tokens.model_dump(by_alias=True)},
                                    message="Token refreshed successfully")

        @self.app.post("/auth/logout")
        async def logout(payload: Any = Body(None)):
            """Revoke the given refresh token. Always succeeds."""
            refresh_token = payload.get("refreshToken") if isinstance(payload, dict) else None

            if isinstance(refresh_token, str) and refresh_token:
                try:
                    await self.token_service.invalidate_refresh_token(refresh_token)
                except Exception as e:
                    self.logger.error("Error invalidating refresh token", error=str(e))

            return success_envelope(message="Logged out successfully")

        @self.app.post("/auth/logout-all")
        async def logout_all(user: User = Depends(current_user)):
            """Revoke every refresh session of the caller."""
            removed = await self.token_service.invalidate_all_user_tokens(user.id)
            return success_envelope({"sessionsRemoved": removed}, message="Logged out from all devices")

        @self.app.post("/auth/verify")
        async def verify(request: Request):
            """Validate a bearer access token for other services."""
            authorization = request.headers.get("Authorization")
            if not authorization:
                raise AuthenticationError("No authorization header", code="MISSING_TOKEN")

            token = extract_bearer_token(authorization)
            claims = self.token_service.verify_access_token(token)

            user = await self.users.get_by_id(str(claims.get("id")))
            if user is None or not user.active:
                raise AuthenticationError("Invalid token or inactive user", code="INVALID_TOKEN")

            request.state.user_info = {"id": user.id, "role": user.role_name}
            return success_envelope({"user": user.to_public()}, message="Token is valid")

        @self.app.get("/auth/profile")
        async def get_profile(user: User = Depends(current_user)):
            """Current user profile."""
            return success_envelope({"user": user.to_public(include_created_at=True)})

        @self.app.put("/auth/profile")
        async def update_profile(payload: Any = Body(None), user: User = Depends(current_user)):
            """Update name, last name or active flag of the caller."""
            data = parse_payload(UpdateProfileRequest, payload)
            changes = data.changes()
            if not changes:
                raise ValidationError("No valid fields to update")

            updated = await self.users.update(user.id, changes)
            if updated is None:
                raise FerremasError("NOT_FOUND", "User not found", status_code=404)

            self.logger.info("Profile updated", user_id=user.id, fields=sorted(changes))
            return success_envelope({"user": updated.to_public()}, message="Profile updated successfully")

    async def _check_dependencies(self):
        """Check auth dependencies."""
        dependencies = {}

        try:
            dependencies["database"] = "ok" if await self.users.ping() else "error"
        except Exception as e:
            self.logger.error("Database health check failed", error=str(e))
            dependencies["database"] = "error"

        return dependencies


def create_app(**overrides):
    """Create FastAPI application."""
    service = AuthService(**overrides)
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
