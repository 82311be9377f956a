"""Main FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from recorder_sync.api.auth import router as auth_router
from recorder_sync.api.recordings import router as recordings_router
from recorder_sync.api.sync import router as sync_router
from recorder_sync.config import settings
from recorder_sync.database.database import init_db
from recorder_sync.services.auth_service import AuthService
from recorder_sync.services.encryption_service import EncryptionService
from recorder_sync.services.freesound_client import FreesoundClient
from recorder_sync.services.recording_store import RecordingStore
from recorder_sync.services.sync_scheduler import SyncScheduler
from recorder_sync.services.sync_service import SyncService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Recorder Sync",
    description="Local sound recorder store synchronized with Freesound",
    version="0.1.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(recordings_router)
app.include_router(sync_router)
app.include_router(auth_router)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    authenticated: bool
    syncing: bool
    message: Optional[str] = None


@app.on_event("startup")
async def startup_event():
    """Initialize database and wire the sync services."""
    # Validate encryption service (will exit if key is invalid)
    encryption_service = EncryptionService()
    init_db()

    client = FreesoundClient()
    await client.__aenter__()

    store = RecordingStore()
    sync_service = SyncService(client)
    sync_service.set_callbacks(store.as_sync_callbacks())

    auth_service = AuthService(client, encryption_service)
    scheduler = SyncScheduler(sync_service, before_sync=auth_service.ensure_fresh_token)
    auth_service.scheduler = scheduler
    store.add_listener(scheduler.on_recordings_changed)

    app.state.freesound_client = client
    app.state.recording_store = store
    app.state.sync_service = sync_service
    app.state.sync_scheduler = scheduler
    app.state.auth_service = auth_service

    await auth_service.restore_session()

    # The upload queue lives in memory; rebuild it from the stored recordings
    scheduler.on_recordings_changed(await store.get_all())
    logger.info("Recorder sync started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop scheduled syncs and close the Freesound client."""
    await app.state.sync_scheduler.close()
    await app.state.freesound_client.__aexit__(None, None, None)


@app.get("/api/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    try:
        await request.app.state.recording_store.get_all()
        return HealthResponse(
            status="healthy",
            authenticated=request.app.state.auth_service.is_authenticated(),
            syncing=request.app.state.sync_scheduler.is_syncing,
        )
    except Exception as e:
        return HealthResponse(status="unhealthy", authenticated=False, syncing=False, message=str(e))
