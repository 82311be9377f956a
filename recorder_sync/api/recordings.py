"""Recording API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from pydantic import BaseModel, ConfigDict

from recorder_sync.api.dependencies import get_recording_store
from recorder_sync.models.recording import Recording
from recorder_sync.services.readiness import is_ready_for_sync
from recorder_sync.services.recording_store import RecordingStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/recordings", tags=["recordings"])


class RecordingUpdate(BaseModel):
    """Recording edit request."""

    name: Optional[str] = None
    description: Optional[str] = None
    bst_category: Optional[str] = None


class RecordingResponse(BaseModel):
    """Recording response (audio is served separately)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    length: Optional[float] = None
    bst_category: Optional[str] = None
    created_at: Optional[datetime] = None
    freesound_id: Optional[int] = None
    sync_status: Optional[str] = None
    sync_error: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    moderation_status: Optional[str] = None
    pending_edit: Optional[bool] = None
    ready_for_sync: bool = False


def _to_response(recording: Recording) -> RecordingResponse:
    response = RecordingResponse.model_validate(recording)
    response.ready_for_sync = is_ready_for_sync(recording)
    return response


@router.get("", response_model=List[RecordingResponse])
async def list_recordings(store: RecordingStore = Depends(get_recording_store)):
    """List all recordings with their sync state."""
    return [_to_response(r) for r in await store.get_all()]


@router.get("/{recording_id}", response_model=RecordingResponse)
async def get_recording(recording_id: int, store: RecordingStore = Depends(get_recording_store)):
    """Get a recording by ID."""
    recording = await store.get(recording_id)
    if recording is None:
        raise HTTPException(status_code=404, detail=f"Recording {recording_id} not found")
    return _to_response(recording)


@router.get("/{recording_id}/audio")
async def get_recording_audio(recording_id: int, store: RecordingStore = Depends(get_recording_store)):
    """Get the raw audio of a recording."""
    recording = await store.get(recording_id)
    if recording is None or not recording.data:
        raise HTTPException(status_code=404, detail=f"No audio for recording {recording_id}")
    return Response(content=recording.data, media_type="application/octet-stream")


@router.post("", response_model=RecordingResponse, status_code=201)
async def create_recording(
    audio: UploadFile = File(...),
    length: Optional[float] = Form(None),
    store: RecordingStore = Depends(get_recording_store),
):
    """Store a new captured recording under its default timestamp name."""
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="Audio file is empty")

    recording = await store.create_from_capture(data, length=length)
    return _to_response(recording)


@router.patch("/{recording_id}", response_model=RecordingResponse)
async def update_recording(
    recording_id: int,
    update: RecordingUpdate,
    store: RecordingStore = Depends(get_recording_store),
):
    """Edit name, description or category of a recording.

    Edits of recordings already on Freesound are pushed on the next sync.
    """
    try:
        recording = await store.edit_recording(
            recording_id,
            name=update.name,
            description=update.description,
            bst_category=update.bst_category,
        )
    except ValueError as e:
        status_code = 404 if "not found" in str(e) else 400
        raise HTTPException(status_code=status_code, detail=str(e))
    return _to_response(recording)


@router.delete("/{recording_id}", status_code=204)
async def delete_recording(recording_id: int, store: RecordingStore = Depends(get_recording_store)):
    """Delete a recording locally (the Freesound copy is kept)."""
    try:
        await store.delete(recording_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)
