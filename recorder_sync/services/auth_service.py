"""Freesound session management."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session, sessionmaker

from recorder_sync.config import settings
from recorder_sync.database.database import SessionLocal
from recorder_sync.models.auth_token import AuthToken
from recorder_sync.models.recording import utcnow
from recorder_sync.schemas.freesound import FreesoundUser, TokenResponse
from recorder_sync.services.encryption_service import EncryptionService
from recorder_sync.services.freesound_client import AuthenticationError, FreesoundClient
from recorder_sync.services.sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)

# Refresh tokens this long before they expire
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AuthService:
    """Service for signing in to Freesound and keeping the access token fresh."""

    def __init__(
        self,
        client: FreesoundClient,
        encryption_service: EncryptionService,
        scheduler: Optional[SyncScheduler] = None,
        session_factory: sessionmaker = SessionLocal,
    ):
        """Initialize auth service.

        Args:
            client: Freesound client whose token this service manages.
            encryption_service: Service for encrypting stored tokens.
            scheduler: Scheduler told about sign-in and sign-out.
            session_factory: Database session factory.
        """
        self.client = client
        self.encryption_service = encryption_service
        self.scheduler = scheduler
        self.session_factory = session_factory
        self._authenticated = False

    def is_authenticated(self) -> bool:
        return self._authenticated

    def _set_authenticated(self, authenticated: bool) -> None:
        self._authenticated = authenticated
        if self.scheduler is not None:
            self.scheduler.set_authenticated(authenticated)

    def get_login_url(self) -> str:
        """Build the Freesound authorization URL the user is sent to."""
        params = urlencode(
            {
                "client_id": settings.freesound_client_id,
                "response_type": "code",
                "redirect_uri": settings.freesound_redirect_uri,
            }
        )
        return f"{self.client.base_url}/oauth2/logout_and_authorize/?{params}"

    def _load_token(self, db: Session) -> Optional[AuthToken]:
        return db.query(AuthToken).first()

    def _save_tokens(self, tokens: TokenResponse, username: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            token = self._load_token(db)
            if token is None:
                token = AuthToken(access_token_encrypted="")
                db.add(token)

            token.access_token_encrypted = self.encryption_service.encrypt(tokens.access_token)
            if tokens.refresh_token:
                token.refresh_token_encrypted = self.encryption_service.encrypt(tokens.refresh_token)
            token.expires_at = utcnow() + timedelta(seconds=tokens.expires_in)
            if username:
                token.username = username
            db.commit()
        finally:
            db.close()

    def _clear_tokens(self) -> None:
        db = self.session_factory()
        try:
            db.query(AuthToken).delete()
            db.commit()
        finally:
            db.close()

    async def complete_login(self, code: str) -> FreesoundUser:
        """Finish the OAuth flow with the authorization code from the redirect.

        Raises:
            AuthenticationError: If the code exchange fails.
        """
        tokens = await self.client.exchange_code_for_tokens(code)
        user = await self.client.get_me()
        self._save_tokens(tokens, user.username)
        logger.info(f"Signed in to Freesound as {user.username}")
        self._set_authenticated(True)
        return user

    async def restore_session(self) -> bool:
        """Load stored tokens at startup and check they still work.

        Returns:
            True if a usable session was restored.
        """
        db = self.session_factory()
        try:
            token = self._load_token(db)
        finally:
            db.close()

        if token is None:
            logger.info("No stored Freesound session")
            return False

        self.client.set_access_token(self.encryption_service.decrypt(token.access_token_encrypted))
        self.client.username = token.username

        try:
            await self.ensure_fresh_token()
        except AuthenticationError as e:
            logger.warning(f"Could not refresh Freesound token: {e}")

        authenticated = await self.client.check_auth_status()
        if not authenticated:
            logger.warning("Stored Freesound session is no longer valid")
            self.client.set_access_token(None)
        self._set_authenticated(authenticated)
        return authenticated

    async def ensure_fresh_token(self) -> None:
        """Refresh the access token when it is about to expire.

        Raises:
            AuthenticationError: If the refresh is rejected.
        """
        db = self.session_factory()
        try:
            token = self._load_token(db)
        finally:
            db.close()

        if token is None or not token.refresh_token_encrypted:
            return

        expires_at = _as_utc(token.expires_at)
        if expires_at is not None and utcnow() < expires_at - TOKEN_REFRESH_MARGIN:
            return

        logger.info("Refreshing Freesound access token")
        refresh_token = self.encryption_service.decrypt(token.refresh_token_encrypted)
        tokens = await self.client.refresh_access_token(refresh_token)
        self._save_tokens(tokens)

    async def logout(self) -> None:
        """Sign out and forget stored tokens."""
        await self.client.logout()
        self._clear_tokens()
        logger.info("Signed out of Freesound")
        self._set_authenticated(False)
