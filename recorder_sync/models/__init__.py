"""Database models package."""

from recorder_sync.models.recording import Recording, SYNC_STATUSES, MODERATION_STATUSES
from recorder_sync.models.auth_token import AuthToken

__all__ = [
    "Recording",
    "AuthToken",
    "SYNC_STATUSES",
    "MODERATION_STATUSES",
]
