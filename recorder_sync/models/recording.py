"""Recording database model."""

from datetime import datetime, timezone
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, Integer, LargeBinary, String, Text
from recorder_sync.database.database import Base

SYNC_STATUSES = ("pending", "syncing", "synced", "error", "conflict")
MODERATION_STATUSES = ("processing", "in_moderation", "approved", "moderation_failed")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Recording(Base):
    """A locally captured audio recording and its Freesound sync state.

    Updates are applied as partial dicts keyed by column name: a missing key
    leaves the column unchanged, a key mapped to None clears it.
    """

    __tablename__ = "recordings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    data = Column(LargeBinary, nullable=True)
    length = Column(Float, nullable=True)  # seconds
    bst_category = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Freesound sync state
    freesound_id = Column(Integer, nullable=True, index=True)
    sync_status = Column(String, nullable=True)  # pending, syncing, synced, error, conflict
    sync_error = Column(Text, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    moderation_status = Column(String, nullable=True)  # processing, in_moderation, approved, moderation_failed
    pending_edit = Column(Boolean, nullable=True, default=False)

    __table_args__ = (
        CheckConstraint(
            "sync_status IS NULL OR sync_status IN ('pending', 'syncing', 'synced', 'error', 'conflict')",
            name="ck_recording_sync_status",
        ),
        CheckConstraint(
            "moderation_status IS NULL OR moderation_status IN "
            "('processing', 'in_moderation', 'approved', 'moderation_failed')",
            name="ck_recording_moderation_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Recording id={self.id} name={self.name!r} freesound_id={self.freesound_id}>"
