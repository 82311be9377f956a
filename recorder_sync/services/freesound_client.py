"""Freesound API client for uploading, downloading and tracking sounds."""

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from recorder_sync.config import settings
from recorder_sync.schemas.freesound import (
    FreesoundSound,
    FreesoundSoundsResponse,
    FreesoundUser,
    PendingUploadsResponse,
    TokenResponse,
    UploadParams,
    UploadResponse,
)

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 150
SEARCH_FIELDS = "id,name,tags,description,duration,license,username,download"


class FreesoundError(Exception):
    """Base error for failed Freesound requests."""


class RateLimitError(FreesoundError):
    """Raised when Freesound keeps answering 429 after the retry budget."""

    def __init__(self, message: str = "Rate limited by Freesound API (429 Too Many Requests)"):
        super().__init__(message)


class AuthenticationError(FreesoundError):
    """Raised when no access token is set or the token was rejected."""


def _is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300


def _is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 429


def _rate_limit_budget_exhausted(retry_state: RetryCallState) -> bool:
    client = retry_state.args[0]
    return retry_state.attempt_number > client.max_retries


def _rate_limit_wait(retry_state: RetryCallState) -> float:
    """Honor a numeric Retry-After header, else back off exponentially."""
    retry_after = retry_state.outcome.result().headers.get("Retry-After")
    if retry_after and str(retry_after).isdigit():
        return int(retry_after)
    client = retry_state.args[0]
    return wait_exponential(multiplier=client.initial_backoff_seconds)(retry_state)


def _log_rate_limited(retry_state: RetryCallState) -> None:
    method, url = retry_state.args[1:3]
    logger.warning(
        f"Rate limited on {method} {url}, retrying in {retry_state.next_action.sleep}s "
        f"(attempt {retry_state.attempt_number})"
    )


def _raise_rate_limit_error(retry_state: RetryCallState) -> None:
    method, url = retry_state.args[1:3]
    logger.error(f"Rate limit retries exhausted for {method} {url}")
    raise RateLimitError()


class FreesoundClient:
    """Client for interacting with the Freesound REST API (apiv2)."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        oauth_proxy_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff_seconds: Optional[float] = None,
        username: Optional[str] = None,
    ):
        """Initialize Freesound client.

        Args:
            access_token: OAuth2 bearer token (can be set later).
            base_url: API root (defaults to settings.freesound_api_base).
            oauth_proxy_url: Token proxy root (defaults to settings.freesound_oauth_proxy_url).
            max_retries: Number of retries on HTTP 429 (defaults to settings.api_max_retries).
            initial_backoff_seconds: First 429 backoff, doubled on every retry.
            username: Cached Freesound username, looked up via /me/ when missing.
        """
        self.base_url = (base_url or settings.freesound_api_base).rstrip('/')
        self.oauth_proxy_url = (oauth_proxy_url if oauth_proxy_url is not None else settings.freesound_oauth_proxy_url).rstrip('/')
        self.max_retries = settings.api_max_retries if max_retries is None else max_retries
        self.initial_backoff_seconds = (
            settings.api_initial_backoff_seconds if initial_backoff_seconds is None else initial_backoff_seconds
        )
        self.access_token = access_token
        self.username = username
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.request_timeout_seconds,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client.

        Raises:
            RuntimeError: If client is not initialized (use async context manager).
        """
        if self._client is None:
            raise RuntimeError("FreesoundClient must be used as async context manager")
        return self._client

    def set_access_token(self, token: Optional[str]) -> None:
        """Replace the bearer token; clearing it also forgets the cached username."""
        self.access_token = token
        if not token:
            self.username = None

    def _auth_headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise AuthenticationError("Not authenticated")
        return {"Authorization": f"Bearer {self.access_token}"}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True
    )
    async def _send_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a single request, retrying transient network failures."""
        client = self._get_client()
        try:
            return await client.request(method=method, url=url, **kwargs)
        except httpx.TimeoutException:
            logger.error(f"Timeout for {method} {url}")
            raise
        except httpx.NetworkError as e:
            logger.error(f"Network error for {method} {url}: {e}")
            raise

    @retry(
        stop=_rate_limit_budget_exhausted,
        wait=_rate_limit_wait,
        retry=retry_if_result(_is_rate_limited),
        before_sleep=_log_rate_limited,
        retry_error_callback=_raise_rate_limit_error,
    )
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, backing off and retrying while Freesound answers 429.

        Raises:
            RateLimitError: If still rate limited after max_retries retries.
        """
        return await self._send_once(method, url, **kwargs)

    async def _request_json(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make an authenticated API request and decode the JSON body.

        Raises:
            AuthenticationError: If not authenticated or the token expired.
            RateLimitError: If rate limited after retries.
            FreesoundError: On any other non-2xx response.
        """
        response = await self._send(
            method,
            endpoint,
            params=params,
            data=data,
            headers=self._auth_headers(),
        )

        if response.status_code == 401:
            raise AuthenticationError("Token expired")

        if not _is_success(response):
            logger.error(f"HTTP error {response.status_code} for {method} {endpoint}: {response.text}")
            raise FreesoundError(f"Freesound API error: {response.status_code} - {response.text}")

        return response.json()

    async def get_me(self) -> FreesoundUser:
        """Get the authenticated user and cache the username."""
        user = FreesoundUser.model_validate(await self._request_json("GET", "/me/"))
        self.username = user.username
        return user

    async def _get_username(self) -> str:
        if self.username:
            return self.username
        return (await self.get_me()).username

    async def get_sounds_by_tag(self, tag: str, page: int = 1) -> FreesoundSoundsResponse:
        """Search the user's own sounds carrying a tag.

        Only sounds that passed moderation are indexed by search.

        Args:
            tag: Tag to filter on.
            page: Result page (150 sounds per page).

        Returns:
            Paginated sounds response.
        """
        username = await self._get_username()
        data = await self._request_json(
            "GET",
            "/search/text/",
            params={
                "query": "",
                "filter": f"username:{username} tag:{tag}",
                "fields": SEARCH_FIELDS,
                "page": page,
                "page_size": SEARCH_PAGE_SIZE,
            },
        )
        return FreesoundSoundsResponse.model_validate(data)

    async def get_sound(self, sound_id: int) -> FreesoundSound:
        """Get a single sound by ID."""
        return FreesoundSound.model_validate(await self._request_json("GET", f"/sounds/{sound_id}/"))

    async def get_pending_uploads(self) -> PendingUploadsResponse:
        """List the user's uploads still awaiting description, processing or moderation."""
        data = await self._request_json("GET", "/sounds/pending_uploads/")
        return PendingUploadsResponse.model_validate(data)

    async def download_sound(self, sound: FreesoundSound) -> bytes:
        """Download the original audio file of a sound.

        Raises:
            FreesoundError: If the download fails.
        """
        url = sound.download or f"/sounds/{sound.id}/download/"
        response = await self._send("GET", url, headers=self._auth_headers(), follow_redirects=True)

        if not _is_success(response):
            raise FreesoundError(f"Failed to download sound: {response.status_code}")

        return response.content

    async def upload_sound(self, params: UploadParams, correlation_id: Optional[int] = None) -> UploadResponse:
        """Upload and describe a sound in a single request.

        Args:
            params: Audio file and descriptive fields.
            correlation_id: Local recording id, sent as X-Recording-Id.

        Returns:
            Upload response carrying the new Freesound sound id.

        Raises:
            RateLimitError: If rate limited after retries.
            FreesoundError: If the upload is rejected.
        """
        headers = self._auth_headers()
        if correlation_id is not None:
            headers["X-Recording-Id"] = str(correlation_id)

        logger.info(f"Uploading '{params.name}' to Freesound ({len(params.audio_file)} bytes, tags={params.tags})")

        response = await self._send(
            "POST",
            "/sounds/upload/",
            headers=headers,
            data={
                "name": params.name,
                "tags": " ".join(params.tags),
                "description": params.description,
                "license": params.license,
                "bst_category": params.bst_category,
            },
            files={"audiofile": (params.filename, params.audio_file, "audio/wav")},
        )

        if not _is_success(response):
            logger.error(f"Freesound upload error: {response.status_code} {response.text}")
            raise FreesoundError(f"Upload failed: {response.status_code} - {response.text}")

        result = UploadResponse.model_validate(response.json())
        logger.info(f"Freesound upload success: sound {result.id}")
        return result

    async def edit_sound(self, freesound_id: int, name: str, description: str) -> None:
        """Push a new name and description for an existing sound.

        Raises:
            FreesoundError: If the edit is rejected.
        """
        response = await self._send(
            "POST",
            f"/sounds/{freesound_id}/edit/",
            headers=self._auth_headers(),
            data={"name": name, "description": description},
        )

        if not _is_success(response):
            raise FreesoundError(f"Edit failed: {response.status_code} - {response.text}")

        logger.info(f"Updated sound {freesound_id} on Freesound")

    async def exchange_code_for_tokens(self, code: str) -> TokenResponse:
        """Exchange an OAuth authorization code for tokens through the token proxy."""
        response = await self._send(
            "POST",
            f"{self.oauth_proxy_url}/token",
            json={"code": code, "redirect_uri": settings.freesound_redirect_uri},
        )

        if not _is_success(response):
            error = response.json()
            raise AuthenticationError(error.get("error_description") or error.get("error") or "Token exchange failed")

        tokens = TokenResponse.model_validate(response.json())
        self.set_access_token(tokens.access_token)
        return tokens

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Obtain a fresh access token from a refresh token."""
        response = await self._send(
            "POST",
            f"{self.oauth_proxy_url}/refresh",
            json={"refresh_token": refresh_token},
        )

        if not _is_success(response):
            error = response.json()
            raise AuthenticationError(error.get("error_description") or error.get("error") or "Token refresh failed")

        tokens = TokenResponse.model_validate(response.json())
        self.access_token = tokens.access_token
        return tokens

    async def check_auth_status(self) -> bool:
        """Check whether the current token is accepted by Freesound.

        Returns:
            True if authenticated, False otherwise.
        """
        if not self.access_token:
            return False
        try:
            await self.get_me()
            return True
        except AuthenticationError:
            return False

    async def logout(self) -> None:
        """Forget the session locally and ask the token proxy to drop its cookies."""
        self.set_access_token(None)
        if not self.oauth_proxy_url:
            return
        try:
            await self._send("POST", f"{self.oauth_proxy_url}/api/logout")
        except httpx.HTTPError as e:
            logger.warning(f"Token proxy logout failed: {e}")
