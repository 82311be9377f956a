"""Tests for Freesound session management."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from cryptography.fernet import Fernet

from recorder_sync.models.auth_token import AuthToken
from recorder_sync.models.recording import utcnow
from recorder_sync.schemas.freesound import FreesoundUser, TokenResponse
from recorder_sync.services.auth_service import AuthService
from recorder_sync.services.encryption_service import EncryptionService
from recorder_sync.services.freesound_client import AuthenticationError, FreesoundClient


@pytest.fixture
def encryption_service():
    """Create an encryption service with a throwaway key."""
    return EncryptionService(key=Fernet.generate_key().decode())


@pytest.fixture
def auth_client():
    """Create a mock Freesound client for the OAuth flow."""
    client = MagicMock(spec=FreesoundClient)
    client.base_url = "https://freesound.test/apiv2"
    client.access_token = None
    client.username = None
    client.exchange_code_for_tokens = AsyncMock(
        return_value=TokenResponse(access_token="access-1", refresh_token="refresh-1", expires_in=3600)
    )
    client.refresh_access_token = AsyncMock(
        return_value=TokenResponse(access_token="access-2", refresh_token="refresh-2", expires_in=3600)
    )
    client.get_me = AsyncMock(return_value=FreesoundUser(username="recordist"))
    client.check_auth_status = AsyncMock(return_value=True)
    client.logout = AsyncMock()
    return client


@pytest.fixture
def scheduler():
    """Create a mock scheduler."""
    return MagicMock()


@pytest.fixture
def auth_service(auth_client, encryption_service, scheduler, session_factory):
    """Create an auth service on the in-memory database."""
    return AuthService(auth_client, encryption_service, scheduler=scheduler, session_factory=session_factory)


def stored_token(session_factory):
    db = session_factory()
    try:
        return db.query(AuthToken).first()
    finally:
        db.close()


def store_token(session_factory, encryption_service, expires_at, refresh_token="refresh-1"):
    db = session_factory()
    try:
        db.add(
            AuthToken(
                access_token_encrypted=encryption_service.encrypt("access-1"),
                refresh_token_encrypted=encryption_service.encrypt(refresh_token) if refresh_token else None,
                expires_at=expires_at,
                username="recordist",
            )
        )
        db.commit()
    finally:
        db.close()


class TestLogin:
    """Tests for signing in."""

    def test_login_url(self, auth_service):
        """Test the authorization URL points at Freesound."""
        url = auth_service.get_login_url()

        assert url.startswith("https://freesound.test/apiv2/oauth2/logout_and_authorize/?")
        assert "response_type=code" in url

    @pytest.mark.asyncio
    async def test_complete_login(self, auth_service, scheduler, encryption_service, session_factory):
        """Test that a successful login stores encrypted tokens."""
        user = await auth_service.complete_login("auth-code")

        assert user.username == "recordist"
        assert auth_service.is_authenticated()
        scheduler.set_authenticated.assert_called_once_with(True)

        token = stored_token(session_factory)
        assert token.access_token_encrypted != "access-1"
        assert encryption_service.decrypt(token.access_token_encrypted) == "access-1"
        assert encryption_service.decrypt(token.refresh_token_encrypted) == "refresh-1"
        assert token.username == "recordist"

    @pytest.mark.asyncio
    async def test_failed_login(self, auth_service, auth_client, scheduler, session_factory):
        """Test that a rejected code stores nothing."""
        auth_client.exchange_code_for_tokens.side_effect = AuthenticationError("Code expired")

        with pytest.raises(AuthenticationError):
            await auth_service.complete_login("stale")

        assert not auth_service.is_authenticated()
        scheduler.set_authenticated.assert_not_called()
        assert stored_token(session_factory) is None


class TestSession:
    """Tests for restoring and refreshing sessions."""

    @pytest.mark.asyncio
    async def test_restore_without_token(self, auth_service, scheduler):
        """Test that restoring with nothing stored stays signed out."""
        assert await auth_service.restore_session() is False
        scheduler.set_authenticated.assert_not_called()

    @pytest.mark.asyncio
    async def test_restore_valid_session(
        self, auth_service, auth_client, scheduler, encryption_service, session_factory
    ):
        """Test restoring a stored, unexpired session."""
        store_token(session_factory, encryption_service, utcnow() + timedelta(hours=1))

        assert await auth_service.restore_session() is True

        auth_client.set_access_token.assert_called_once_with("access-1")
        auth_client.refresh_access_token.assert_not_called()
        scheduler.set_authenticated.assert_called_once_with(True)

    @pytest.mark.asyncio
    async def test_restore_rejected_session(
        self, auth_service, auth_client, scheduler, encryption_service, session_factory
    ):
        """Test that a token Freesound rejects leaves the user signed out."""
        store_token(session_factory, encryption_service, utcnow() + timedelta(hours=1))
        auth_client.check_auth_status.return_value = False

        assert await auth_service.restore_session() is False

        auth_client.set_access_token.assert_called_with(None)
        scheduler.set_authenticated.assert_called_once_with(False)

    @pytest.mark.asyncio
    async def test_refreshes_expiring_token(self, auth_service, auth_client, encryption_service, session_factory):
        """Test that a token about to expire is refreshed."""
        store_token(session_factory, encryption_service, utcnow() + timedelta(seconds=30))

        await auth_service.ensure_fresh_token()

        auth_client.refresh_access_token.assert_awaited_once_with("refresh-1")
        token = stored_token(session_factory)
        assert encryption_service.decrypt(token.access_token_encrypted) == "access-2"
        assert encryption_service.decrypt(token.refresh_token_encrypted) == "refresh-2"

    @pytest.mark.asyncio
    async def test_keeps_fresh_token(self, auth_service, auth_client, encryption_service, session_factory):
        """Test that a fresh token is left alone."""
        store_token(session_factory, encryption_service, utcnow() + timedelta(hours=2))

        await auth_service.ensure_fresh_token()

        auth_client.refresh_access_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, auth_service, auth_client, encryption_service, session_factory):
        """Test that expired tokens without a refresh token are not refreshed."""
        store_token(session_factory, encryption_service, utcnow() - timedelta(hours=1), refresh_token=None)

        await auth_service.ensure_fresh_token()

        auth_client.refresh_access_token.assert_not_called()


class TestLogout:
    """Tests for signing out."""

    @pytest.mark.asyncio
    async def test_logout(self, auth_service, auth_client, scheduler, session_factory):
        """Test that logout clears stored tokens and stops syncing."""
        await auth_service.complete_login("auth-code")

        await auth_service.logout()

        auth_client.logout.assert_awaited_once()
        assert stored_token(session_factory) is None
        assert not auth_service.is_authenticated()
        scheduler.set_authenticated.assert_called_with(False)
