"""Scheduling policy deciding when the sync service runs."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from recorder_sync.config import settings
from recorder_sync.models.recording import Recording, utcnow
from recorder_sync.services.readiness import should_auto_queue
from recorder_sync.services.sync_service import SyncResult, SyncService

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Triggers sync passes on startup, reconnection and local changes.

    Triggers are debounced and spaced at least min_interval apart. Timers
    only ever delay the start of a pass; a running pass is never cancelled
    by a new trigger.
    """

    def __init__(
        self,
        sync_service: SyncService,
        debounce_ms: Optional[int] = None,
        min_interval_ms: Optional[int] = None,
        initial_sync_delay_ms: Optional[int] = None,
        is_online: bool = True,
        before_sync: Optional[Callable[[], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize sync scheduler.

        Args:
            sync_service: Sync service driven by this scheduler.
            debounce_ms: Quiet period after the last trigger (defaults to settings.sync_debounce_ms).
            min_interval_ms: Minimum spacing between passes (defaults to settings.sync_min_interval_ms).
            initial_sync_delay_ms: Delay before the first pass of a session.
            is_online: Initial connectivity state.
            before_sync: Coroutine awaited before each pass, e.g. a token refresh.
            clock: Monotonic time source in seconds.
        """
        self.sync_service = sync_service
        self.before_sync = before_sync
        self.debounce_ms = settings.sync_debounce_ms if debounce_ms is None else debounce_ms
        self.min_interval_ms = settings.sync_min_interval_ms if min_interval_ms is None else min_interval_ms
        self.initial_sync_delay_ms = (
            settings.initial_sync_delay_ms if initial_sync_delay_ms is None else initial_sync_delay_ms
        )
        self._clock = clock

        self.is_online = is_online
        self.is_authenticated = False
        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.last_sync_result: Optional[SyncResult] = None
        self.pending_count = 0

        self._last_sync_at: Optional[float] = None
        self._has_initial_synced = False
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._initial_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    def _spawn_sync(self) -> None:
        task = asyncio.get_running_loop().create_task(self.trigger_sync())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _debounce_delay(self) -> float:
        debounce = self.debounce_ms / 1000
        if self._last_sync_at is None:
            return debounce
        since_last_sync = self._clock() - self._last_sync_at
        return max(debounce, self.min_interval_ms / 1000 - since_last_sync)

    def debounced_sync(self) -> None:
        """Schedule a sync, replacing any sync scheduled but not yet started."""
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()

        delay = self._debounce_delay()
        logger.debug(f"Sync scheduled in {delay:.1f}s")
        self._debounce_handle = asyncio.get_running_loop().call_later(delay, self._spawn_sync)

    async def trigger_sync(self) -> None:
        """Run a sync pass now if signed in and not already syncing.

        While offline a pass is still attempted when uploads are queued.
        """
        if not self.is_authenticated or self.is_syncing:
            return
        if not self.is_online and self.sync_service.is_queue_empty():
            return

        self.is_syncing = True
        self.pending_count = self.sync_service.get_queue_length()

        try:
            if self.before_sync is not None:
                await self.before_sync()
            result = await self.sync_service.perform_sync()
            self.last_sync_result = result
            self.last_sync_time = utcnow()
            self._last_sync_at = self._clock()

            if result.errors:
                logger.warning(f"Sync completed with errors: {result.errors}")
        except Exception as e:
            logger.error(f"Sync failed: {e}")
        finally:
            self.is_syncing = False
            self.pending_count = self.sync_service.get_queue_length()

    def _schedule_initial_sync(self) -> None:
        if self._has_initial_synced or not self.is_authenticated or not self.is_online:
            return

        self._has_initial_synced = True
        logger.info(f"Initial sync in {self.initial_sync_delay_ms}ms")
        self._initial_handle = asyncio.get_running_loop().call_later(
            self.initial_sync_delay_ms / 1000, self._spawn_sync
        )

    def set_authenticated(self, authenticated: bool) -> None:
        """Record the Freesound session state; signing in starts the initial sync."""
        was_authenticated = self.is_authenticated
        self.is_authenticated = authenticated

        if authenticated and not was_authenticated:
            self._schedule_initial_sync()
        elif not authenticated and was_authenticated:
            # Next session gets its own initial sync
            self._has_initial_synced = False
            self._cancel_timers()

    def set_online(self, online: bool) -> None:
        """Record connectivity; coming back online schedules a sync."""
        was_online = self.is_online
        self.is_online = online

        if not online or was_online or not self.is_authenticated:
            return

        if self._has_initial_synced:
            logger.info("Back online, scheduling sync")
            self.debounced_sync()
        else:
            self._schedule_initial_sync()

    def on_recordings_changed(self, recordings: Iterable[Recording]) -> None:
        """Queue every recording ready for upload and schedule a sync if any are queued."""
        if not self.is_authenticated:
            return

        for recording in recordings:
            if should_auto_queue(recording):
                self.sync_service.queue_upload(recording.id)

        self.pending_count = self.sync_service.get_queue_length()

        if not self.sync_service.is_queue_empty():
            self.debounced_sync()

    async def handle_upload_completed(self, recording_id: int, freesound_id: int) -> None:
        """Apply an upload that finished outside a sync pass (e.g. a background retry)."""
        logger.info(f"Background upload of recording {recording_id} completed as sound {freesound_id}")
        await self.sync_service.record_upload_success(recording_id, freesound_id)
        self.pending_count = self.sync_service.get_queue_length()

    def status(self) -> Dict[str, Any]:
        """Get a snapshot of the scheduler state."""
        return {
            "is_syncing": self.is_syncing,
            "is_online": self.is_online,
            "is_authenticated": self.is_authenticated,
            "is_rate_limited": self.sync_service.is_rate_limited,
            "rate_limit_wait_seconds": self.sync_service.rate_limit_wait_seconds,
            "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "last_sync_result": self.last_sync_result.model_dump() if self.last_sync_result else None,
            "pending_count": self.pending_count,
        }

    def _cancel_timers(self) -> None:
        for handle in (self._debounce_handle, self._initial_handle):
            if handle is not None:
                handle.cancel()
        self._debounce_handle = None
        self._initial_handle = None

    async def close(self) -> None:
        """Cancel pending timers and wait for in-flight passes to finish."""
        self._cancel_timers()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
