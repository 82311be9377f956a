"""Services package."""

from recorder_sync.services.encryption_service import EncryptionService
from recorder_sync.services.freesound_client import FreesoundClient, FreesoundError, RateLimitError
from recorder_sync.services.recording_store import RecordingStore
from recorder_sync.services.sync_scheduler import SyncScheduler
from recorder_sync.services.sync_service import SyncCallbacks, SyncResult, SyncService

__all__ = [
    "EncryptionService",
    "FreesoundClient",
    "FreesoundError",
    "RateLimitError",
    "RecordingStore",
    "SyncCallbacks",
    "SyncResult",
    "SyncScheduler",
    "SyncService",
]
