"""Narrow interfaces for the external collaborators the pipeline consumes.

Adapters live in ``openai_provider``, ``runway`` and ``storage``; tests inject
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass
class RawTranscriptSegment:
    text: str
    start: float
    end: float


@dataclass
class StructuredTool:
    """A single forced tool call: name, description and JSON schema of its arguments."""

    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class GeneratedImagePayload:
    image_bytes: bytes
    revised_prompt: Optional[str] = None
    content_type: str = "image/png"


@dataclass
class VideoJobStatus:
    status: str
    output_url: Optional[str] = None
    failure_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class SpeechToTextProvider(Protocol):
    async def transcribe(self, audio_path: Path, audio_format: str) -> List[RawTranscriptSegment]: ...


class StructuredGenerationProvider(Protocol):
    async def generate_structured(
        self, system_prompt: str, user_prompt: str, tool: StructuredTool
    ) -> Dict[str, Any]:
        """Return the parsed tool arguments. Callers validate the shape."""
        ...


class ImageGenerationProvider(Protocol):
    async def generate_image(self, prompt: str, size: str, quality: str) -> GeneratedImagePayload: ...


class VideoGenerationProvider(Protocol):
    async def submit_job(
        self, image_url: str, prompt: str, duration_seconds: int, ratio: str
    ) -> str: ...

    async def get_job_status(self, job_id: str) -> VideoJobStatus: ...


class BlobStorage(Protocol):
    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        """Store bytes and return a public-read URL."""
        ...

    async def upload_from_url(
        self, bucket: str, key: str, source_url: str, content_type: str
    ) -> str:
        """Stream a remote object into storage chunk by chunk; return its public URL."""
        ...

    async def list_keys(self, bucket: str, prefix: str) -> List[str]: ...

    async def remove(self, bucket: str, keys: Sequence[str]) -> None: ...

    def key_from_public_url(self, bucket: str, url: str) -> Optional[str]: ...
