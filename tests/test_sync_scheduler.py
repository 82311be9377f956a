"""Tests for sync scheduler."""

import asyncio
import pytest
from unittest.mock import AsyncMock

from recorder_sync.services.sync_scheduler import SyncScheduler
from recorder_sync.services.sync_service import SyncResult, SyncService
from tests.conftest import FakeClock, make_recording

# Long enough for 10ms timers to fire
SETTLE_SECONDS = 0.1


@pytest.fixture
def sync_service(mock_client, callbacks):
    """Create a sync service whose passes are mocked out."""
    service = SyncService(client=mock_client)
    service.set_callbacks(callbacks)
    service.perform_sync = AsyncMock(return_value=SyncResult(uploaded=1))
    return service


@pytest.fixture
def scheduler(sync_service):
    """Create a scheduler with short timers."""
    return SyncScheduler(
        sync_service,
        debounce_ms=10,
        min_interval_ms=0,
        initial_sync_delay_ms=10,
        is_online=True,
    )


class TestTriggerSync:
    """Tests for trigger_sync guards."""

    @pytest.mark.asyncio
    async def test_not_authenticated(self, scheduler, sync_service):
        """Test that nothing runs while signed out."""
        await scheduler.trigger_sync()

        sync_service.perform_sync.assert_not_called()

    @pytest.mark.asyncio
    async def test_runs_when_authenticated(self, scheduler, sync_service):
        """Test a successful pass updates the scheduler state."""
        scheduler.is_authenticated = True

        await scheduler.trigger_sync()

        sync_service.perform_sync.assert_called_once()
        assert scheduler.last_sync_result == SyncResult(uploaded=1)
        assert scheduler.last_sync_time is not None
        assert not scheduler.is_syncing

    @pytest.mark.asyncio
    async def test_already_syncing(self, scheduler, sync_service):
        """Test that a trigger during a pass is ignored."""
        scheduler.is_authenticated = True
        scheduler.is_syncing = True

        await scheduler.trigger_sync()

        sync_service.perform_sync.assert_not_called()

    @pytest.mark.asyncio
    async def test_offline_with_empty_queue(self, scheduler, sync_service):
        """Test that nothing runs offline when nothing is queued."""
        scheduler.is_authenticated = True
        scheduler.is_online = False

        await scheduler.trigger_sync()

        sync_service.perform_sync.assert_not_called()

    @pytest.mark.asyncio
    async def test_offline_with_queued_uploads(self, scheduler, sync_service):
        """Test that queued uploads are still attempted while offline."""
        scheduler.is_authenticated = True
        scheduler.is_online = False
        sync_service.queue_upload(3)

        await scheduler.trigger_sync()

        sync_service.perform_sync.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_pass_is_contained(self, scheduler, sync_service):
        """Test that a failing pass does not escape the scheduler."""
        scheduler.is_authenticated = True
        sync_service.perform_sync.side_effect = RuntimeError("database is locked")

        await scheduler.trigger_sync()

        assert not scheduler.is_syncing
        assert scheduler.last_sync_time is None

    @pytest.mark.asyncio
    async def test_before_sync_hook(self, sync_service):
        """Test that the pre-sync hook runs before each pass."""
        hook = AsyncMock()
        scheduler = SyncScheduler(sync_service, before_sync=hook)
        scheduler.is_authenticated = True

        await scheduler.trigger_sync()

        hook.assert_awaited_once()
        sync_service.perform_sync.assert_called_once()


class TestDebounce:
    """Tests for debounced triggering."""

    @pytest.mark.asyncio
    async def test_bursts_collapse_to_one_sync(self, scheduler, sync_service):
        """Test that several triggers in a row produce a single pass."""
        scheduler.is_authenticated = True

        scheduler.debounced_sync()
        scheduler.debounced_sync()
        scheduler.debounced_sync()
        await asyncio.sleep(SETTLE_SECONDS)

        sync_service.perform_sync.assert_called_once()

    def test_delay_without_previous_sync(self, sync_service):
        """Test that the first sync only waits for the debounce window."""
        scheduler = SyncScheduler(sync_service, debounce_ms=5000, min_interval_ms=60000, clock=FakeClock())

        assert scheduler._debounce_delay() == 5.0

    def test_delay_respects_min_interval(self, sync_service):
        """Test that syncs are spaced by the minimum interval."""
        clock = FakeClock()
        scheduler = SyncScheduler(sync_service, debounce_ms=5000, min_interval_ms=60000, clock=clock)
        scheduler._last_sync_at = clock.now - 10

        assert scheduler._debounce_delay() == 50.0

        clock.advance(100)
        assert scheduler._debounce_delay() == 5.0

    @pytest.mark.asyncio
    async def test_close_cancels_scheduled_sync(self, scheduler, sync_service):
        """Test that closing the scheduler drops pending triggers."""
        scheduler.is_authenticated = True

        scheduler.debounced_sync()
        await scheduler.close()
        await asyncio.sleep(SETTLE_SECONDS)

        sync_service.perform_sync.assert_not_called()


class TestSessionTriggers:
    """Tests for initial and reconnection syncs."""

    @pytest.mark.asyncio
    async def test_initial_sync_once_per_session(self, scheduler, sync_service):
        """Test that signing in triggers exactly one initial sync."""
        scheduler.set_authenticated(True)
        scheduler.set_authenticated(True)
        await asyncio.sleep(SETTLE_SECONDS)

        sync_service.perform_sync.assert_called_once()

    @pytest.mark.asyncio
    async def test_new_session_gets_initial_sync(self, scheduler, sync_service):
        """Test that signing out and in again syncs again."""
        scheduler.set_authenticated(True)
        await asyncio.sleep(SETTLE_SECONDS)
        scheduler.set_authenticated(False)
        scheduler.set_authenticated(True)
        await asyncio.sleep(SETTLE_SECONDS)

        assert sync_service.perform_sync.call_count == 2

    @pytest.mark.asyncio
    async def test_initial_sync_waits_for_network(self, sync_service):
        """Test that the initial sync is deferred until online."""
        scheduler = SyncScheduler(
            sync_service, debounce_ms=10, min_interval_ms=0, initial_sync_delay_ms=10, is_online=False
        )

        scheduler.set_authenticated(True)
        await asyncio.sleep(SETTLE_SECONDS)
        sync_service.perform_sync.assert_not_called()

        scheduler.set_online(True)
        await asyncio.sleep(SETTLE_SECONDS)
        sync_service.perform_sync.assert_called_once()

    @pytest.mark.asyncio
    async def test_reconnection_sync(self, scheduler, sync_service):
        """Test that coming back online schedules a sync."""
        scheduler.set_authenticated(True)
        await asyncio.sleep(SETTLE_SECONDS)

        scheduler.set_online(False)
        scheduler.set_online(True)
        await asyncio.sleep(SETTLE_SECONDS)

        assert sync_service.perform_sync.call_count == 2

    @pytest.mark.asyncio
    async def test_reconnection_while_signed_out(self, scheduler, sync_service):
        """Test that reconnecting while signed out does nothing."""
        scheduler.set_online(False)
        scheduler.set_online(True)
        await asyncio.sleep(SETTLE_SECONDS)

        sync_service.perform_sync.assert_not_called()


class TestAutoQueue:
    """Tests for queueing recordings after local changes."""

    @pytest.mark.asyncio
    async def test_ready_recordings_are_queued(self, scheduler, sync_service):
        """Test that only eligible recordings are queued."""
        scheduler.is_authenticated = True
        scheduler._has_initial_synced = True

        scheduler.on_recordings_changed([
            make_recording(id=1),
            make_recording(id=2, name="2024-01-15 14:30:45"),
            make_recording(id=3, sync_status="error"),
            make_recording(id=4, sync_status="syncing"),
            make_recording(id=5, freesound_id=77),
            make_recording(id=6, moderation_status="moderation_failed"),
            make_recording(id=7, sync_status="pending"),
        ])

        assert sync_service._queue == [1, 7]
        assert scheduler.pending_count == 2

        await asyncio.sleep(SETTLE_SECONDS)
        sync_service.perform_sync.assert_called_once()

    @pytest.mark.asyncio
    async def test_nothing_queued_when_signed_out(self, scheduler, sync_service):
        """Test that changes are ignored while signed out."""
        scheduler.on_recordings_changed([make_recording(id=1)])

        assert sync_service.is_queue_empty()

    @pytest.mark.asyncio
    async def test_no_sync_without_queued_work(self, scheduler, sync_service):
        """Test that an empty queue schedules nothing."""
        scheduler.is_authenticated = True

        scheduler.on_recordings_changed([make_recording(id=1, name="2024-01-15 14:30:45")])
        await asyncio.sleep(SETTLE_SECONDS)

        sync_service.perform_sync.assert_not_called()


class TestBackgroundCompletion:
    """Tests for uploads completed outside a pass."""

    @pytest.mark.asyncio
    async def test_upload_completed(self, scheduler, sync_service, callbacks):
        """Test that a background upload links the recording."""
        sync_service.queue_upload(9)

        await scheduler.handle_upload_completed(9, 4321)

        update = callbacks.on_recording_update.call_args.args[1]
        assert callbacks.on_recording_update.call_args.args[0] == 9
        assert update["freesound_id"] == 4321
        assert update["sync_status"] == "synced"
        assert update["moderation_status"] == "processing"
        assert scheduler.pending_count == 0


class TestStatus:
    """Tests for the status snapshot."""

    @pytest.mark.asyncio
    async def test_status_after_sync(self, scheduler):
        """Test the status reflects the last pass."""
        scheduler.is_authenticated = True
        await scheduler.trigger_sync()

        status = scheduler.status()

        assert status["is_authenticated"] is True
        assert status["is_syncing"] is False
        assert status["is_rate_limited"] is False
        assert status["rate_limit_wait_seconds"] == 0
        assert status["last_sync_result"] == {"uploaded": 1, "downloaded": 0, "errors": []}
        assert status["last_sync_time"] is not None
