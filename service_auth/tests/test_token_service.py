"""
Unit tests for the token service.
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from service_auth.app.tokens import SessionCleanupTask
from shared.errors import (
    InvalidOrExpiredRefreshTokenError,
    InvalidTokenError,
    TokenExpiredError,
    UserInactiveError,
)
from shared.test_helpers import TEST_JWT_SECRET, create_mock_user, mock_token_generator
from shared.tokens import encode_token, parse_duration


class TestIssueTokenPair:
    """Test cases for issuing token pairs."""

    @pytest.mark.asyncio
    async def test_access_token_carries_identity_claims(self, token_service, admin):
        pair = await token_service.issue_token_pair(admin)

        claims = token_service.verify_access_token(pair.access_token)
        assert claims["id"] == admin.id
        assert claims["email"] == "admin@ferremas.cl"
        assert claims["role"] == "admin"
        assert claims["role_id"] == admin.role_id
        assert claims["name"] == "Admin"
        assert claims["lastname"] == "Ferremas"
        assert claims["type"] == "access"

    @pytest.mark.asyncio
    async def test_persists_refresh_session(self, token_service, sessions, admin):
        pair = await token_service.issue_token_pair(admin)

        assert len(sessions.records) == 1
        record = sessions.records[0]
        assert record.user_id == admin.id
        assert record.refresh_token == pair.refresh_token
        expected = datetime.now(timezone.utc) + timedelta(days=7)
        assert abs((record.expires_at - expected).total_seconds()) < 5

    @pytest.mark.asyncio
    async def test_serializes_with_camel_case_keys(self, token_service, admin):
        pair = await token_service.issue_token_pair(admin)

        body = pair.model_dump(by_alias=True)
        assert set(body) == {"accessToken", "refreshToken", "expiresIn"}
        assert body["expiresIn"] == "15m"

    @pytest.mark.asyncio
    async def test_refresh_token_only_carries_user_id(self, token_service, admin):
        pair = await token_service.issue_token_pair(admin)

        claims = token_service.verify_refresh_token(pair.refresh_token)
        assert claims["id"] == admin.id
        assert claims["type"] == "refresh"
        assert "email" not in claims

    @pytest.mark.asyncio
    async def test_propagates_storage_errors(self, token_service, sessions, admin):
        async def broken_create(*args, **kwargs):
            raise ConnectionError("database down")

        sessions.create = broken_create
        with pytest.raises(ConnectionError):
            await token_service.issue_token_pair(admin)


class TestVerifyAccessToken:
    """Test cases for access token verification."""

    def test_expired_token(self, token_service):
        token = mock_token_generator.generate_access_token(create_mock_user(), expires_in=-60)

        with pytest.raises(TokenExpiredError):
            token_service.verify_access_token(token)

    def test_wrong_signature(self, token_service):
        token = mock_token_generator.generate_access_token(create_mock_user())
        tampered = jwt.encode(jwt.get_unverified_claims(token), "another-secret", algorithm="HS256")

        with pytest.raises(InvalidTokenError):
            token_service.verify_access_token(tampered)

    def test_malformed_token(self, token_service):
        with pytest.raises(InvalidTokenError):
            token_service.verify_access_token("not-a-jwt")

    def test_refresh_token_is_not_an_access_token(self, token_service):
        token = encode_token({"id": "u-1"}, TEST_JWT_SECRET, timedelta(minutes=5), token_type="refresh")

        with pytest.raises(InvalidTokenError):
            token_service.verify_access_token(token)

    def test_check_access_token_reports_expiry(self, token_service):
        token = mock_token_generator.generate_access_token(create_mock_user(), expires_in=-60)

        result = token_service.check_access_token(token)
        assert result.valid is False
        assert result.expired is True
        assert result.error_code == "TOKEN_EXPIRED"

    def test_check_access_token_valid(self, token_service):
        user = create_mock_user("manager")
        result = token_service.check_access_token(mock_token_generator.generate_access_token(user))

        assert result.valid is True
        assert result.claims["role"] == "manager"
        assert result.error_code is None

    def test_foreign_token_is_invalid(self, token_service):
        token = jwt.encode({"id": "x", "type": "access"}, TEST_JWT_SECRET + "-other", algorithm="HS256")

        result = token_service.check_access_token(token)
        assert result.valid is False
        assert result.error_code == "INVALID_TOKEN"


class TestRefreshAccessToken:
    """Test cases for refreshing access tokens."""

    @pytest.mark.asyncio
    async def test_refresh_with_live_session(self, token_service, admin):
        pair = await token_service.issue_token_pair(admin)

        refreshed = await token_service.refresh_access_token(pair.refresh_token)

        claims = token_service.verify_access_token(refreshed.access_token)
        assert claims["id"] == admin.id
        assert claims["role"] == "admin"
        assert refreshed.model_dump(by_alias=True)["expiresIn"] == "15m"

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_rotated(self, token_service, sessions, admin):
        pair = await token_service.issue_token_pair(admin)

        await token_service.refresh_access_token(pair.refresh_token)
        await token_service.refresh_access_token(pair.refresh_token)

        assert [record.refresh_token for record in sessions.records] == [pair.refresh_token]

    @pytest.mark.asyncio
    async def test_refresh_without_session_row(self, token_service, admin):
        refresh_token = token_service._sign_refresh_token(admin)

        with pytest.raises(InvalidOrExpiredRefreshTokenError):
            await token_service.refresh_access_token(refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_with_expired_session_row(self, token_service, sessions, admin):
        pair = await token_service.issue_token_pair(admin)
        sessions.records[0].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

        with pytest.raises(InvalidOrExpiredRefreshTokenError):
            await token_service.refresh_access_token(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_with_bad_signature(self, token_service):
        with pytest.raises(InvalidTokenError):
            await token_service.refresh_access_token("garbage")

    @pytest.mark.asyncio
    async def test_refresh_for_inactive_user(self, token_service, users, admin):
        pair = await token_service.issue_token_pair(admin)
        await users.update(admin.id, {"active": False})

        with pytest.raises(UserInactiveError):
            await token_service.refresh_access_token(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_invalidate_then_refresh_fails(self, token_service, admin):
        pair = await token_service.issue_token_pair(admin)

        assert await token_service.invalidate_refresh_token(pair.refresh_token) is True
        with pytest.raises(InvalidOrExpiredRefreshTokenError):
            await token_service.refresh_access_token(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_invalidate_is_idempotent(self, token_service, sessions, admin):
        pair = await token_service.issue_token_pair(admin)

        assert await token_service.invalidate_refresh_token(pair.refresh_token) is True
        assert await token_service.invalidate_refresh_token(pair.refresh_token) is True
        assert sessions.records == []


class TestSessionMaintenance:
    """Test cases for bulk session removal."""

    @pytest.mark.asyncio
    async def test_invalidate_all_user_tokens(self, token_service, sessions, users, admin):
        manager = users.users["550e8400-e29b-41d4-a716-446655440002"]
        await token_service.issue_token_pair(admin)
        await token_service.issue_token_pair(admin)
        kept = await token_service.issue_token_pair(manager)

        removed = await token_service.invalidate_all_user_tokens(admin.id)

        assert removed == 2
        assert [record.refresh_token for record in sessions.records] == [kept.refresh_token]

    @pytest.mark.asyncio
    async def test_cleanup_expired_sessions(self, token_service, sessions, admin):
        await token_service.issue_token_pair(admin)
        await token_service.issue_token_pair(admin)
        live = await token_service.issue_token_pair(admin)
        for record in sessions.records[:2]:
            record.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)

        assert await token_service.cleanup_expired_sessions() == 2
        assert [record.refresh_token for record in sessions.records] == [live.refresh_token]
        assert await token_service.cleanup_expired_sessions() == 0

    @pytest.mark.asyncio
    async def test_cleanup_task_survives_errors(self, token_service):
        async def failing_cleanup():
            raise RuntimeError("database down")

        token_service.cleanup_expired_sessions = failing_cleanup
        task = SessionCleanupTask(token_service, interval_seconds=3600)

        assert await task.run_once() == 0

    @pytest.mark.asyncio
    async def test_cleanup_task_start_and_stop(self, token_service):
        task = SessionCleanupTask(token_service, interval_seconds=3600)

        await task.start()
        assert task.running is True
        await task.stop()
        assert task.running is False


class TestParseDuration:
    """Test cases for expiry strings."""

    @pytest.mark.parametrize("value, expected", [
        ("15m", timedelta(minutes=15)),
        ("7d", timedelta(days=7)),
        ("1h", timedelta(hours=1)),
        ("30s", timedelta(seconds=30)),
        ("3600", timedelta(seconds=3600)),
        (120, timedelta(seconds=120)),
    ])
    def test_parse(self, value, expected):
        assert parse_duration(value) == expected

    def test_rejects_unknown_unit(self):
        with pytest.raises(ValueError):
            parse_duration("10 fortnights")
