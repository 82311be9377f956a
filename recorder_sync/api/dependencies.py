"""Dependencies resolving the long-lived services created at startup."""

from fastapi import Request

from recorder_sync.services.auth_service import AuthService
from recorder_sync.services.recording_store import RecordingStore
from recorder_sync.services.sync_scheduler import SyncScheduler


def get_recording_store(request: Request) -> RecordingStore:
    """Get the recording store instance."""
    return request.app.state.recording_store


def get_sync_scheduler(request: Request) -> SyncScheduler:
    """Get the sync scheduler instance."""
    return request.app.state.sync_scheduler


def get_auth_service(request: Request) -> AuthService:
    """Get the auth service instance."""
    return request.app.state.auth_service
