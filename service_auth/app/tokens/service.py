"""
Token service: issues, verifies, refreshes and revokes JWT token pairs.

Access tokens are stateless and short lived. Refresh tokens are only valid
while a matching, unexpired row exists in ``user_sessions``; deleting the
row is the one way to revoke them.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.config import BaseConfig
from shared.errors import InvalidOrExpiredRefreshTokenError, UserInactiveError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tokens import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    TokenVerification,
    check_token,
    decode_token,
    encode_token,
    parse_duration,
)

from ..persistence import SessionRepository, User


class TokenPair(BaseModel):
    """Access/refresh pair returned on login and registration."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    expires_in: str = Field(alias="expiresIn")


class RefreshedAccessToken(BaseModel):
    """Result of a refresh: a new access token only."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    expires_in: str = Field(alias="expiresIn")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issues and validates the access/refresh token pair."""

    def __init__(
        self,
        sessions: SessionRepository,
        config: BaseConfig,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.sessions = sessions
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("auth.tokens")

        self.access_secret = config.jwt_secret
        self.refresh_secret = config.jwt_refresh_secret
        self.algorithm = config.jwt_algorithm
        self.access_expires_in = config.jwt_expires_in
        self.refresh_expires_in = config.jwt_refresh_expires_in
        self._access_ttl = parse_duration(config.jwt_expires_in)
        self._refresh_ttl = parse_duration(config.jwt_refresh_expires_in)

    def _sign_access_token(self, user: User) -> str:
        return encode_token(
            user.to_claims(),
            self.access_secret,
            self._access_ttl,
            token_type=ACCESS_TOKEN_TYPE,
            algorithm=self.algorithm,
        )

    def _sign_refresh_token(self, user: User) -> str:
        return encode_token(
            {"id": user.id},
            self.refresh_secret,
            self._refresh_ttl,
            token_type=REFRESH_TOKEN_TYPE,
            algorithm=self.algorithm,
        )

    def _count(self, metric: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric, **labels)

    async def issue_token_pair(self, user: User) -> TokenPair:
        """Sign both tokens and persist the refresh session."""
        access_token = self._sign_access_token(user)
        refresh_token = self._sign_refresh_token(user)

        await self.sessions.create(user.id, refresh_token, self.clock() + self._refresh_ttl)

        self._count("tokens_issued_total", kind="pair")
        self.logger.info("Token pair issued", user_id=user.id, role=user.role_name)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_expires_in,
        )

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """Return the claims of a valid access token.

        Raises ``TokenExpiredError`` once the expiry has passed and
        ``InvalidTokenError`` for anything else.
        """
        return decode_token(token, self.access_secret, token_type=ACCESS_TOKEN_TYPE, algorithm=self.algorithm)

    def check_access_token(self, token: str) -> TokenVerification:
        result = check_token(token, self.access_secret, token_type=ACCESS_TOKEN_TYPE, algorithm=self.algorithm)
        self._count("token_validations_total", status="valid" if result.valid else result.error_code.lower())
        return result

    def verify_refresh_token(self, token: str) -> Dict[str, Any]:
        return decode_token(token, self.refresh_secret, token_type=REFRESH_TOKEN_TYPE, algorithm=self.algorithm)

    async def refresh_access_token(self, refresh_token: str) -> RefreshedAccessToken:
        """Issue a new access token for a live refresh session.

        The refresh token itself is not rotated.
        """
        self.verify_refresh_token(refresh_token)

        user = await self.sessions.find_user_for_token(refresh_token, self.clock())
        if user is None:
            raise InvalidOrExpiredRefreshTokenError()
        if not user.active:
            raise UserInactiveError()

        self._count("tokens_issued_total", kind="access")
        self.logger.info("Access token refreshed", user_id=user.id)
        return RefreshedAccessToken(
            access_token=self._sign_access_token(user),
            expires_in=self.access_expires_in,
        )

    async def invalidate_refresh_token(self, refresh_token: str) -> bool:
        """Delete the session row for ``refresh_token``. Safe to repeat."""
        removed = await self.sessions.delete_token(refresh_token)
        self.logger.info("Refresh token invalidated", sessions_removed=removed)
        return True

    async def invalidate_all_user_tokens(self, user_id: str) -> int:
        removed = await self.sessions.delete_user_sessions(user_id)
        self.logger.info("All user sessions invalidated", user_id=user_id, sessions_removed=removed)
        return removed

    async def cleanup_expired_sessions(self) -> int:
        removed = await self.sessions.delete_expired(self.clock())
        if self.metrics and removed:
            self.metrics.increment_counter("sessions_cleaned_total", removed)
        self.logger.info("Expired sessions cleaned up", count=removed)
        return removed


class SessionCleanupTask:
    """Runs :meth:`TokenService.cleanup_expired_sessions` on a fixed interval."""

    def __init__(self, token_service: TokenService, interval_seconds: float = 3600):
        self.token_service = token_service
        self.interval = float(interval_seconds)
        self.logger = get_logger("auth.tokens.cleanup")
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        self.logger.info("Session cleanup scheduled", interval_seconds=self.interval)

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    async def run_once(self) -> int:
        try:
            return await self.token_service.cleanup_expired_sessions()
        except Exception as e:
            self.logger.error("Error during session cleanup", error=str(e))
            return 0
