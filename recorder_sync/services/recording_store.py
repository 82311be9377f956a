"""Local recording store backed by SQLAlchemy."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from recorder_sync.database.database import SessionLocal
from recorder_sync.models.recording import Recording, utcnow
from recorder_sync.schemas.freesound import BST_CATEGORIES
from recorder_sync.services.readiness import format_recording_name, validate_recording_name
from recorder_sync.services.sync_service import SyncCallbacks

logger = logging.getLogger(__name__)

RecordingsListener = Callable[[List[Recording]], None]


class RecordingStore:
    """Service for storing recordings locally.

    Every write notifies registered listeners with the full, fresh list of
    recordings.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        """Initialize recording store.

        Args:
            session_factory: Session factory; must not expire objects on commit.
        """
        self.session_factory = session_factory
        self._listeners: List[RecordingsListener] = []

    def add_listener(self, listener: RecordingsListener) -> None:
        self._listeners.append(listener)

    async def _notify(self) -> None:
        if not self._listeners:
            return
        recordings = await self.get_all()
        for listener in self._listeners:
            listener(recordings)

    def _get_or_raise(self, db: Session, recording_id: int) -> Recording:
        recording = db.get(Recording, recording_id)
        if recording is None:
            raise ValueError(f"Recording {recording_id} not found")
        return recording

    async def get_all(self) -> List[Recording]:
        """List all recordings, oldest first."""
        db = self.session_factory()
        try:
            return db.query(Recording).order_by(Recording.id).all()
        finally:
            db.close()

    async def get(self, recording_id: int) -> Optional[Recording]:
        db = self.session_factory()
        try:
            return db.get(Recording, recording_id)
        finally:
            db.close()

    async def add(self, fields: Dict[str, Any]) -> int:
        """Insert a recording.

        Args:
            fields: Column values; the id is assigned by the database.

        Returns:
            The new recording id.
        """
        db = self.session_factory()
        try:
            recording = Recording(**fields)
            db.add(recording)
            db.commit()
            db.refresh(recording)
            recording_id = recording.id
        finally:
            db.close()

        logger.info(f"Recording {recording_id} '{fields.get('name')}' added")
        await self._notify()
        return recording_id

    async def update(self, recording_id: int, updates: Dict[str, Any]) -> None:
        """Apply a partial update.

        Args:
            recording_id: Recording to update.
            updates: Column values to set; None clears a column, missing keys are left alone.

        Raises:
            ValueError: If the recording does not exist or a key is not a column.
        """
        db = self.session_factory()
        try:
            recording = self._get_or_raise(db, recording_id)
            for key, value in updates.items():
                if key == "id" or key not in Recording.__table__.columns:
                    raise ValueError(f"Unknown recording field '{key}'")
                setattr(recording, key, value)
            db.commit()
        finally:
            db.close()

        await self._notify()

    async def delete(self, recording_id: int) -> None:
        """Delete a recording.

        Raises:
            ValueError: If the recording does not exist.
        """
        db = self.session_factory()
        try:
            recording = self._get_or_raise(db, recording_id)
            db.delete(recording)
            db.commit()
        finally:
            db.close()

        logger.info(f"Recording {recording_id} deleted")
        await self._notify()

    async def create_from_capture(
        self,
        data: bytes,
        length: Optional[float] = None,
        captured_at: Optional[datetime] = None,
    ) -> Recording:
        """Store a freshly captured recording under its default timestamp name."""
        recording_id = await self.add(
            {
                "name": format_recording_name(captured_at or utcnow()),
                "data": data,
                "length": length,
            }
        )
        return await self.get(recording_id)

    async def edit_recording(
        self,
        recording_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        bst_category: Optional[str] = None,
    ) -> Recording:
        """Edit the user-facing fields of a recording.

        Renaming or re-describing a recording that is already on Freesound
        flags it so the next sync pushes the change. A failed, never uploaded
        recording gets its error cleared so it is queued again.

        Args:
            recording_id: Recording to edit.
            name: New name; blank or overlong names keep the current one.
            description: New description.
            bst_category: Broad Sound Taxonomy category key.

        Returns:
            The updated recording.

        Raises:
            ValueError: If the recording does not exist or the category is unknown.
        """
        if bst_category is not None and bst_category not in BST_CATEGORIES:
            raise ValueError(f"Unknown category '{bst_category}'")

        db = self.session_factory()
        try:
            recording = self._get_or_raise(db, recording_id)
            changed = False

            if name is not None:
                new_name = validate_recording_name(name, recording.name)
                if new_name != recording.name:
                    recording.name = new_name
                    changed = True

            if description is not None and description != (recording.description or ""):
                recording.description = description
                changed = True

            if bst_category is not None:
                recording.bst_category = bst_category

            if changed:
                if recording.freesound_id:
                    recording.pending_edit = True
                elif recording.sync_status == "error":
                    recording.sync_status = None
                    recording.sync_error = None

            db.commit()
            db.refresh(recording)
        finally:
            db.close()

        await self._notify()
        return recording

    def as_sync_callbacks(self) -> SyncCallbacks:
        """Expose this store to the sync service."""
        return SyncCallbacks(
            on_recording_update=self.update,
            on_recording_add=self.add,
            on_recording_delete=self.delete,
            get_recordings=self.get_all,
        )
