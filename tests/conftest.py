"""Shared test fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recorder_sync.database.database import Base
from recorder_sync.models.recording import Recording
from recorder_sync.schemas.freesound import FreesoundSoundsResponse, PendingUploadsResponse, UploadResponse
from recorder_sync.services.freesound_client import FreesoundClient
from recorder_sync.services.sync_service import SyncCallbacks


class FakeClock:
    """Controllable monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_recording(**overrides) -> Recording:
    """Build a detached recording that is ready for upload unless overridden."""
    fields = {
        "id": 1,
        "name": "Field Recording A",
        "description": "birds at dawn",
        "data": b"RIFF-audio",
    }
    fields.update(overrides)
    return Recording(**fields)


@pytest.fixture
def clock():
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def mock_client():
    """Create a mock Freesound client with an empty remote catalog."""
    client = MagicMock(spec=FreesoundClient)
    client.get_sounds_by_tag = AsyncMock(return_value=FreesoundSoundsResponse(results=[]))
    client.get_pending_uploads = AsyncMock(return_value=PendingUploadsResponse())
    client.upload_sound = AsyncMock(return_value=UploadResponse(id=555))
    client.download_sound = AsyncMock(return_value=b"remote-audio")
    client.edit_sound = AsyncMock(return_value=None)
    return client


@pytest.fixture
def callbacks():
    """Create mock local store callbacks with no recordings."""
    return SyncCallbacks(
        on_recording_update=AsyncMock(return_value=None),
        on_recording_add=AsyncMock(return_value=42),
        on_recording_delete=AsyncMock(return_value=None),
        get_recordings=AsyncMock(return_value=[]),
    )


@pytest.fixture
def session_factory():
    """Create an in-memory database and return its session factory."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()
