import os
import tempfile
from pathlib import Path
from typing import List, Optional

import structlog

from storyline.core.errors import InvalidInputError, TranscriptionError
from storyline.schemas import TranscriptUnit
from storyline.services.providers import RawTranscriptSegment, SpeechToTextProvider

logger = structlog.get_logger()

DEFAULT_AUDIO_FORMAT = "mp3"


def _audio_format(filename: Optional[str]) -> str:
    suffix = Path(filename or "").suffix.lstrip(".").lower()
    return suffix or DEFAULT_AUDIO_FORMAT


def normalize_segments(raw_segments: List[RawTranscriptSegment]) -> List[TranscriptUnit]:
    """Sort by start time and clamp bounds so units never overlap or run backwards."""
    units: List[TranscriptUnit] = []
    previous_end = 0.0
    for seg in sorted(raw_segments, key=lambda s: (s.start, s.end)):
        text = seg.text.strip()
        if not text:
            continue
        start = max(float(seg.start), previous_end, 0.0)
        end = max(float(seg.end), start)
        units.append(TranscriptUnit(text=text, start=start, end=end))
        previous_end = end
    return units


async def transcribe_audio(
    provider: SpeechToTextProvider,
    audio: bytes,
    *,
    filename: Optional[str] = None,
    max_bytes: int = 25 * 1024 * 1024,
) -> List[TranscriptUnit]:
    """Stage audio in a temp file, transcribe it, and return ordered units.

    The temporary file is removed on every exit path.
    """
    if not audio:
        raise InvalidInputError("Audio file is required.")
    if len(audio) > max_bytes:
        raise InvalidInputError(f"File size must be less than {max_bytes // (1024 * 1024)}MB.")

    audio_format = _audio_format(filename)
    fd, tmp_name = tempfile.mkstemp(prefix="storyline-audio-", suffix=f".{audio_format}")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(audio)
        logger.info("transcription.start", bytes=len(audio), format=audio_format)
        raw_segments = await provider.transcribe(tmp_path, audio_format)
    finally:
        tmp_path.unlink(missing_ok=True)
        logger.debug("transcription.temp_removed", path=str(tmp_path))

    units = normalize_segments(raw_segments)
    if not units:
        raise TranscriptionError("Transcript is empty.")
    logger.info("transcription.done", segments=len(units))
    return units


def transcript_text(units: List[TranscriptUnit]) -> str:
    return " ".join(unit.text for unit in units)
