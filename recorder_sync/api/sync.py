"""Sync API endpoints."""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from recorder_sync.api.dependencies import get_sync_scheduler
from recorder_sync.services.sync_scheduler import SyncScheduler

router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncResultResponse(BaseModel):
    """Result of the last sync pass."""

    uploaded: int
    downloaded: int
    errors: List[str]


class SyncStatusResponse(BaseModel):
    """Sync status response."""

    is_syncing: bool
    is_online: bool
    is_authenticated: bool
    is_rate_limited: bool
    rate_limit_wait_seconds: int
    last_sync_time: Optional[str] = None
    last_sync_result: Optional[SyncResultResponse] = None
    pending_count: int


class ConnectivityRequest(BaseModel):
    """Connectivity change notification."""

    online: bool


class UploadCompletedRequest(BaseModel):
    """Notification of an upload finished outside a sync pass."""

    recording_id: int
    freesound_id: int


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    """Get the current sync state."""
    return SyncStatusResponse(**scheduler.status())


@router.post("/trigger", response_model=SyncStatusResponse)
async def trigger_sync(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    """Run a sync pass now.

    Does nothing when signed out or while a pass is already running.
    """
    if not scheduler.is_authenticated:
        raise HTTPException(status_code=401, detail="Not signed in to Freesound")
    await scheduler.trigger_sync()
    return SyncStatusResponse(**scheduler.status())


@router.post("/connectivity", response_model=SyncStatusResponse)
async def set_connectivity(
    request: ConnectivityRequest,
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
):
    """Report going offline or coming back online."""
    scheduler.set_online(request.online)
    return SyncStatusResponse(**scheduler.status())


@router.post("/upload-completed", response_model=SyncStatusResponse)
async def upload_completed(
    request: UploadCompletedRequest,
    scheduler: SyncScheduler = Depends(get_sync_scheduler),
):
    """Record an upload delivered by a background retry."""
    try:
        await scheduler.handle_upload_completed(request.recording_id, request.freesound_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SyncStatusResponse(**scheduler.status())
