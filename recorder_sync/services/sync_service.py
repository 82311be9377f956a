"""Sync service reconciling local recordings with Freesound."""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from recorder_sync.config import settings
from recorder_sync.models.recording import Recording, utcnow
from recorder_sync.schemas.freesound import FreesoundSound, PendingUploadsResponse, UploadParams
from recorder_sync.services.audio_converter import convert_to_wav
from recorder_sync.services.freesound_client import FreesoundClient, RateLimitError
from recorder_sync.services.readiness import is_upload_eligible

logger = logging.getLogger(__name__)

EXTRA_UPLOAD_TAGS = ["field-recording", "sound-recorder"]
RATE_LIMITED_SYNC_ERROR = "Rate limited, will retry"


class SyncResult(BaseModel):
    """Outcome of one reconciliation pass."""

    uploaded: int = 0
    downloaded: int = 0
    errors: List[str] = Field(default_factory=list)


@dataclass
class SyncCallbacks:
    """Local store operations the sync service reads and writes through."""

    on_recording_update: Callable[[int, Dict[str, Any]], Awaitable[None]]
    on_recording_add: Callable[[Dict[str, Any]], Awaitable[int]]
    on_recording_delete: Callable[[int], Awaitable[None]]
    get_recordings: Callable[[], Awaitable[List[Recording]]]


class SyncService:
    """Service for reconciling the local recording store with Freesound.

    One pass (perform_sync) uploads ready recordings, pushes pending edits,
    refreshes moderation status, downloads sounds missing locally and removes
    local copies of sounds deleted upstream. At most one pass runs at a time.
    """

    def __init__(
        self,
        client: FreesoundClient,
        convert_audio: Optional[Callable[[bytes], Awaitable[bytes]]] = None,
        tag: Optional[str] = None,
        license: Optional[str] = None,
        default_bst_category: Optional[str] = None,
        rate_limit_backoff_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize sync service.

        Args:
            client: Freesound API client (already opened).
            convert_audio: Coroutine converting recorded audio to WAV.
            tag: Tag identifying sounds owned by this app (defaults to settings.sync_tag).
            license: License applied to uploads (defaults to settings.sync_license).
            default_bst_category: Category used when a recording has none.
            rate_limit_backoff_ms: Cooldown after a rate-limited upload.
            clock: Monotonic time source in seconds.
        """
        self.client = client
        self.convert_audio = convert_audio or convert_to_wav
        self.tag = tag or settings.sync_tag
        self.license = license or settings.sync_license
        self.default_bst_category = default_bst_category or settings.default_bst_category
        self.rate_limit_backoff_ms = (
            settings.rate_limit_backoff_ms if rate_limit_backoff_ms is None else rate_limit_backoff_ms
        )
        self._clock = clock

        self._is_running = False
        self._queue: List[int] = []
        self._callbacks: Optional[SyncCallbacks] = None
        self._rate_limited_until = 0.0

    def set_callbacks(self, callbacks: SyncCallbacks) -> None:
        """Wire the local store operations used during a pass."""
        self._callbacks = callbacks

    def queue_upload(self, recording_id: int) -> None:
        """Queue a recording for upload; queuing twice is a no-op."""
        if recording_id not in self._queue:
            self._queue.append(recording_id)

    def _remove_from_queue(self, recording_id: int) -> None:
        if recording_id in self._queue:
            self._queue.remove(recording_id)

    def is_queue_empty(self) -> bool:
        """Check whether no uploads are waiting."""
        return not self._queue

    def get_queue_length(self) -> int:
        """Number of recordings waiting for upload."""
        return len(self._queue)

    def is_currently_syncing(self) -> bool:
        """Check if a reconciliation pass is in flight."""
        return self._is_running

    @property
    def is_rate_limited(self) -> bool:
        return self._clock() < self._rate_limited_until

    @property
    def rate_limit_wait_seconds(self) -> int:
        remaining = self._rate_limited_until - self._clock()
        return max(0, math.ceil(remaining))

    def _start_cooldown(self) -> None:
        until = self._clock() + self.rate_limit_backoff_ms / 1000
        # Never move the cooldown backwards
        self._rate_limited_until = max(self._rate_limited_until, until)

    async def perform_sync(self) -> SyncResult:
        """Run one full reconciliation pass.

        Returns an empty result without doing anything if a pass is already
        running or no callbacks are set, and a single error without any I/O
        while rate limited.

        Returns:
            SyncResult with upload/download counts and per-record errors.

        Raises:
            Exception: Whatever get_recordings raises; the local store is
                the only failure that aborts a pass.
        """
        if self._is_running or self._callbacks is None:
            return SyncResult()

        if self.is_rate_limited:
            wait_seconds = self.rate_limit_wait_seconds
            logger.info(f"Rate limited, waiting {wait_seconds}s before next sync")
            return SyncResult(errors=[f"Rate limited, retry in {wait_seconds}s"])

        self._is_running = True
        result = SyncResult()

        try:
            await self._reconcile(self._callbacks, result)
        finally:
            self._is_running = False

        if result.errors:
            logger.warning(f"Sync completed with {len(result.errors)} errors")
        logger.info(f"Sync completed: {result.uploaded} uploaded, {result.downloaded} downloaded")
        return result

    async def _reconcile(self, callbacks: SyncCallbacks, result: SyncResult) -> None:
        local_recordings = await callbacks.get_recordings()

        by_freesound_id: Dict[int, Recording] = {}
        without_freesound_id: List[Recording] = []
        for recording in local_recordings:
            if recording.freesound_id:
                by_freesound_id[recording.freesound_id] = recording
            elif recording.id is not None:
                without_freesound_id.append(recording)

        remote_sounds = await self._fetch_remote_sounds()
        # None when the catalog is unknown; absence from it then proves nothing
        remote_ids = {sound.id for sound in remote_sounds} if remote_sounds is not None else None
        remote_sounds = remote_sounds or []

        logger.info("Step 1: Uploading unlinked recordings")
        await self._upload_unlinked(callbacks, without_freesound_id, result)

        logger.info("Step 2: Processing upload queue")
        await self._upload_queued(callbacks, local_recordings, result)

        logger.info("Step 3: Pushing pending edits")
        await self._push_pending_edits(callbacks, local_recordings, result)

        logger.info("Step 4: Refreshing moderation status")
        pending = await self._fetch_pending_uploads()
        failed_ids = await self._refresh_moderation_status(
            callbacks, by_freesound_id, remote_ids, pending, result
        )

        logger.info("Step 5: Downloading remote sounds")
        await self._download_missing(callbacks, remote_sounds, by_freesound_id, result)

        # Must run after the moderation refresh, which marks vanished unapproved sounds as failed
        logger.info("Step 6: Removing recordings deleted on Freesound")
        await self._delete_removed(callbacks, by_freesound_id, remote_ids, pending, failed_ids, result)

    async def _fetch_remote_sounds(self) -> Optional[List[FreesoundSound]]:
        """Fetch every sound carrying the sync tag; None on failure."""
        sounds: List[FreesoundSound] = []
        page = 1
        try:
            while True:
                response = await self.client.get_sounds_by_tag(self.tag, page=page)
                sounds.extend(response.results)
                if not response.next:
                    break
                page += 1
        except Exception as e:
            logger.warning(f"Could not fetch remote sounds: {e}")
            return None
        return sounds

    async def _fetch_pending_uploads(self) -> Optional[PendingUploadsResponse]:
        try:
            return await self.client.get_pending_uploads()
        except Exception as e:
            logger.warning(f"Could not fetch pending uploads: {e}")
            return None

    async def _upload_unlinked(
        self,
        callbacks: SyncCallbacks,
        recordings: List[Recording],
        result: SyncResult,
    ) -> None:
        for recording in recordings:
            if recording.sync_status == "synced":
                continue
            if not is_upload_eligible(recording):
                continue

            rate_limited = await self._upload_recording(callbacks, recording, result)
            self._remove_from_queue(recording.id)
            if rate_limited:
                break

    async def _upload_queued(
        self,
        callbacks: SyncCallbacks,
        local_recordings: List[Recording],
        result: SyncResult,
    ) -> None:
        by_id = {r.id: r for r in local_recordings if r.id is not None}

        while self._queue and not self.is_rate_limited:
            recording_id = self._queue.pop(0)
            recording = by_id.get(recording_id)

            if recording is None or not is_upload_eligible(recording):
                logger.debug(f"Dropping recording {recording_id} from upload queue")
                continue

            if await self._upload_recording(callbacks, recording, result):
                break

    async def _upload_recording(
        self,
        callbacks: SyncCallbacks,
        recording: Recording,
        result: SyncResult,
    ) -> bool:
        """Upload one recording.

        Returns:
            True if Freesound rate limited the upload and the caller should stop.
        """
        try:
            await callbacks.on_recording_update(recording.id, {"sync_status": "syncing"})

            wav_data = await self.convert_audio(recording.data)
            upload = await self.client.upload_sound(
                UploadParams(
                    audio_file=wav_data,
                    filename=f"{recording.name}.wav",
                    name=recording.name,
                    tags=[self.tag, *EXTRA_UPLOAD_TAGS],
                    description=recording.description or "",
                    license=self.license,
                    bst_category=recording.bst_category or self.default_bst_category,
                ),
                correlation_id=recording.id,
            )

            await self.record_upload_success(recording.id, upload.id)
            result.uploaded += 1
            return False

        except RateLimitError:
            self._start_cooldown()
            backoff_seconds = math.ceil(self.rate_limit_backoff_ms / 1000)
            logger.warning(f"Rate limited while uploading '{recording.name}', backing off {backoff_seconds}s")
            result.errors.append(f"Rate limited by Freesound. Will retry in {backoff_seconds} seconds.")
            await self._store_upload_state(
                callbacks,
                recording,
                {"sync_status": "pending", "sync_error": RATE_LIMITED_SYNC_ERROR},
                result,
            )
            return True

        except Exception as e:
            message = str(e) or "Upload failed"
            logger.error(f"Failed to upload recording {recording.id}: {message}")
            result.errors.append(f'Failed to upload "{recording.name}": {message}')
            await self._store_upload_state(
                callbacks, recording, {"sync_status": "error", "sync_error": message}, result
            )
            return False

    async def _store_upload_state(
        self,
        callbacks: SyncCallbacks,
        recording: Recording,
        updates: Dict[str, Any],
        result: SyncResult,
    ) -> None:
        # The recording may have been deleted locally while its upload was in flight
        try:
            await callbacks.on_recording_update(recording.id, updates)
        except Exception as e:
            logger.error(f"Failed to store sync status of recording {recording.id}: {e}")
            result.errors.append(f'Failed to update status of "{recording.name}": {e}')

    async def record_upload_success(self, recording_id: int, freesound_id: int) -> None:
        """Mark a recording as uploaded and awaiting Freesound processing.

        Raises:
            RuntimeError: If callbacks have not been set.
        """
        if self._callbacks is None:
            raise RuntimeError("Sync callbacks are not configured")

        await self._callbacks.on_recording_update(
            recording_id,
            {
                "freesound_id": freesound_id,
                "sync_status": "synced",
                "last_synced_at": utcnow(),
                "sync_error": None,
                "moderation_status": "processing",
            },
        )
        self._remove_from_queue(recording_id)
        logger.info(f"Recording {recording_id} uploaded as Freesound sound {freesound_id}")

    async def _push_pending_edits(
        self,
        callbacks: SyncCallbacks,
        local_recordings: List[Recording],
        result: SyncResult,
    ) -> None:
        for recording in local_recordings:
            if not recording.pending_edit or not recording.freesound_id or recording.id is None:
                continue
            if recording.moderation_status != "approved":
                continue

            try:
                await self.client.edit_sound(recording.freesound_id, recording.name, recording.description or "")
                await callbacks.on_recording_update(
                    recording.id,
                    {"pending_edit": False, "last_synced_at": utcnow()},
                )
            except Exception as e:
                message = str(e) or "Edit failed"
                logger.error(f"Failed to update sound {recording.freesound_id}: {message}")
                result.errors.append(f'Failed to update "{recording.name}": {message}')

    def _resolve_moderation_status(
        self,
        recording: Recording,
        remote_ids: Optional[Set[int]],
        pending: Optional[PendingUploadsResponse],
    ) -> Optional[str]:
        """Work out where a sound is in Freesound's pipeline, or None if unknown."""
        freesound_id = recording.freesound_id
        if remote_ids is not None and freesound_id in remote_ids:
            return "approved"
        if pending is None:
            return None
        if freesound_id in pending.processing_ids:
            return "processing"
        if freesound_id in pending.moderation_ids:
            return "in_moderation"
        if remote_ids is None:
            return None
        if recording.moderation_status == "approved":
            # Vanished after approval; the deletion step decides
            return None
        return "moderation_failed"

    async def _refresh_moderation_status(
        self,
        callbacks: SyncCallbacks,
        by_freesound_id: Dict[int, Recording],
        remote_ids: Optional[Set[int]],
        pending: Optional[PendingUploadsResponse],
        result: SyncResult,
    ) -> Set[int]:
        """Update moderation status of uploaded recordings.

        Returns:
            Local ids of recordings newly marked as moderation_failed.
        """
        failed_ids: Set[int] = set()

        for recording in by_freesound_id.values():
            if recording.moderation_status == "moderation_failed" or recording.id is None:
                continue

            new_status = self._resolve_moderation_status(recording, remote_ids, pending)
            if new_status is None or new_status == recording.moderation_status:
                continue

            try:
                await callbacks.on_recording_update(recording.id, {"moderation_status": new_status})
                logger.info(
                    f"Sound {recording.freesound_id} moderation status: "
                    f"{recording.moderation_status} -> {new_status}"
                )
                if new_status == "moderation_failed":
                    failed_ids.add(recording.id)
            except Exception as e:
                logger.error(f"Failed to store moderation status of recording {recording.id}: {e}")
                result.errors.append(f'Failed to update status of "{recording.name}": {e}')

        return failed_ids

    async def _download_missing(
        self,
        callbacks: SyncCallbacks,
        remote_sounds: List[FreesoundSound],
        by_freesound_id: Dict[int, Recording],
        result: SyncResult,
    ) -> None:
        for sound in remote_sounds:
            if sound.id in by_freesound_id:
                continue

            try:
                data = await self.client.download_sound(sound)
                await callbacks.on_recording_add(
                    {
                        "name": sound.name,
                        "description": sound.description,
                        "length": sound.duration,
                        "data": data,
                        "freesound_id": sound.id,
                        "sync_status": "synced",
                        "moderation_status": "approved",
                        "last_synced_at": utcnow(),
                    }
                )
                result.downloaded += 1
                logger.info(f"Downloaded Freesound sound {sound.id} '{sound.name}'")
            except Exception as e:
                message = str(e) or "Download failed"
                logger.error(f"Failed to download sound {sound.id}: {message}")
                result.errors.append(f'Failed to download "{sound.name}": {message}')

    async def _delete_removed(
        self,
        callbacks: SyncCallbacks,
        by_freesound_id: Dict[int, Recording],
        remote_ids: Optional[Set[int]],
        pending: Optional[PendingUploadsResponse],
        failed_ids: Set[int],
        result: SyncResult,
    ) -> None:
        # Absence only proves deletion when both listings were fetched
        if pending is None or remote_ids is None:
            return

        for freesound_id, recording in by_freesound_id.items():
            if recording.id is None or recording.id in failed_ids:
                continue
            if freesound_id in remote_ids:
                continue
            if freesound_id in pending.processing_ids or freesound_id in pending.moderation_ids:
                continue
            if recording.moderation_status != "approved":
                continue

            try:
                await callbacks.on_recording_delete(recording.id)
                logger.info(f"Deleted recording {recording.id}: sound {freesound_id} was removed from Freesound")
            except Exception as e:
                logger.error(f"Failed to delete recording {recording.id}: {e}")
                result.errors.append(f'Failed to delete "{recording.name}": {e}')
