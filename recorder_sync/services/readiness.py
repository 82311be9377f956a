"""Readiness rules deciding which recordings may be uploaded to Freesound."""

import re
from datetime import datetime
from typing import Any

# Names generated at capture time, e.g. "2024-01-15 14:30:45"
DEFAULT_NAME_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}")

MAX_NAME_LENGTH = 500


def format_recording_name(moment: datetime) -> str:
    """Build the default name given to a freshly captured recording."""
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def validate_recording_name(name: str, fallback: str) -> str:
    """Return the trimmed name, or the fallback when it is blank or too long."""
    trimmed = (name or "").strip()
    if not trimmed or len(trimmed) > MAX_NAME_LENGTH:
        return fallback
    return trimmed


def is_default_name(name: str) -> bool:
    """Check whether a name is still the auto-generated timestamp."""
    return bool(DEFAULT_NAME_PATTERN.fullmatch(name or ""))


def is_ready_for_sync(recording: Any) -> bool:
    """A recording is ready once it has a custom name and a description."""
    if is_default_name(recording.name):
        return False
    return bool((recording.description or "").strip())


def is_upload_eligible(recording: Any) -> bool:
    """Check every precondition for attempting an upload of a recording.

    Args:
        recording: Local recording.

    Returns:
        True if the recording has audio data and an id, has never been
        uploaded, did not fail moderation, and is ready for sync.
    """
    if not recording.data or recording.id is None:
        return False
    if recording.freesound_id:
        return False
    if recording.moderation_status == "moderation_failed":
        return False
    return is_ready_for_sync(recording)


def should_auto_queue(recording: Any) -> bool:
    """Eligible recordings that are neither mid-upload nor in an error state."""
    if recording.sync_status in ("syncing", "error"):
        return False
    return is_upload_eligible(recording)
