"""Conversion of captured audio to the WAV format Freesound accepts."""

import asyncio
import io
import logging
from typing import Optional

from pydub import AudioSegment

logger = logging.getLogger(__name__)

WAV_SAMPLE_WIDTH = 2  # 16-bit PCM


def _is_wav(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def convert_to_wav_sync(data: bytes, source_format: Optional[str] = None) -> bytes:
    """Decode audio bytes and re-encode them as 16-bit PCM WAV.

    Args:
        data: Encoded audio (WebM, MP4, OGG, WAV, ...).
        source_format: Container format hint passed to ffmpeg (optional).

    Returns:
        WAV file bytes.
    """
    if _is_wav(data):
        source_format = "wav"
    segment = AudioSegment.from_file(io.BytesIO(data), format=source_format)
    segment = segment.set_sample_width(WAV_SAMPLE_WIDTH)

    buffer = io.BytesIO()
    segment.export(buffer, format="wav")
    wav_bytes = buffer.getvalue()
    logger.debug(f"Converted {len(data)} bytes of audio to {len(wav_bytes)} bytes of WAV")
    return wav_bytes


async def convert_to_wav(data: bytes) -> bytes:
    """Convert audio to WAV without blocking the event loop."""
    return await asyncio.to_thread(convert_to_wav_sync, data)
