"""Pytest configuration, fakes for every external collaborator, and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest

from storyline.core.config import Settings
from storyline.core.errors import ProviderError
from storyline.repositories.storylines import InMemoryStorylinesRepository
from storyline.schemas import Segment, SegmentStatus, Storyline, StorylineCreate
from storyline.services.pipeline import StorylinePipeline
from storyline.services.providers import (
    GeneratedImagePayload,
    RawTranscriptSegment,
    StructuredTool,
    VideoJobStatus,
)
from storyline.services.storyline_store import StorylineStore

STORAGE_BASE = "https://storage.test"


class FakeTranscriber:
    def __init__(self, segments: Optional[List[RawTranscriptSegment]] = None, error: Exception | None = None):
        self.segments = segments or []
        self.error = error
        self.calls: List[Path] = []
        self.file_existed_during_call: List[bool] = []

    async def transcribe(self, audio_path: Path, audio_format: str) -> List[RawTranscriptSegment]:
        self.calls.append(audio_path)
        self.file_existed_during_call.append(audio_path.exists())
        if self.error is not None:
            raise self.error
        return list(self.segments)


class FakeStructured:
    """Returns a canned payload per tool name and records every request."""

    def __init__(self, responses: Optional[Dict[str, Union[dict, Exception]]] = None):
        self.responses = responses or {}
        self.calls: List[tuple[str, str, StructuredTool]] = []

    async def generate_structured(self, system_prompt: str, user_prompt: str, tool: StructuredTool) -> dict:
        self.calls.append((system_prompt, user_prompt, tool))
        response = self.responses[tool.name]
        if isinstance(response, Exception):
            raise response
        return response


class FakeImages:
    """Image generator that fails whenever ``should_fail(prompt)`` is true."""

    def __init__(self, should_fail: Optional[Callable[[str], bool]] = None):
        self.should_fail = should_fail or (lambda prompt: False)
        self.prompts: List[str] = []

    async def generate_image(self, prompt: str, size: str, quality: str) -> GeneratedImagePayload:
        self.prompts.append(prompt)
        if self.should_fail(prompt):
            raise ProviderError("image provider unavailable")
        return GeneratedImagePayload(image_bytes=f"png-{len(self.prompts)}".encode(), revised_prompt=None)


class FakeVideos:
    def __init__(
        self,
        job_id: str = "job-1",
        submit_error: Exception | None = None,
        statuses: Optional[Sequence[Union[VideoJobStatus, Exception]]] = None,
    ):
        self.job_id = job_id
        self.submit_error = submit_error
        self.statuses = list(statuses or [])
        self.submissions: List[tuple[str, str]] = []
        self.status_checks: List[str] = []

    async def submit_job(self, image_url: str, prompt: str, duration_seconds: int, ratio: str) -> str:
        self.submissions.append((image_url, prompt))
        if self.submit_error is not None:
            raise self.submit_error
        return self.job_id

    async def get_job_status(self, job_id: str) -> VideoJobStatus:
        self.status_checks.append(job_id)
        result = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeStorage:
    def __init__(self, fail_uploads_for: Sequence[str] = ()):
        self.objects: Dict[tuple[str, str], bytes] = {}
        self.fail_uploads_for = set(fail_uploads_for)
        self.streamed_from: List[str] = []

    def _url(self, bucket: str, key: str) -> str:
        return f"{STORAGE_BASE}/{bucket}/{key}"

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        if key in self.fail_uploads_for:
            raise ProviderError(f"upload of {key} failed")
        self.objects[(bucket, key)] = data
        return self._url(bucket, key)

    async def upload_from_url(self, bucket: str, key: str, source_url: str, content_type: str) -> str:
        if key in self.fail_uploads_for:
            raise ProviderError(f"upload of {key} failed")
        self.streamed_from.append(source_url)
        self.objects[(bucket, key)] = source_url.encode()
        return self._url(bucket, key)

    async def list_keys(self, bucket: str, prefix: str) -> List[str]:
        return [key for (b, key) in self.objects if b == bucket and key.startswith(prefix)]

    async def remove(self, bucket: str, keys: Sequence[str]) -> None:
        for key in keys:
            self.objects.pop((bucket, key), None)

    def key_from_public_url(self, bucket: str, url: str) -> Optional[str]:
        prefix = f"{STORAGE_BASE}/{bucket}/"
        return url[len(prefix):] if url.startswith(prefix) else None

    def keys(self, bucket: str) -> List[str]:
        return sorted(key for (b, key) in self.objects if b == bucket)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        openai_api_key="test-key",
        runway_api_key="test-key",
        video_poll_interval_seconds=1.0,
        video_poll_backoff_factor=1.5,
        video_poll_max_interval_seconds=30.0,
        video_poll_max_lifetime_seconds=900.0,
    )


@pytest.fixture
def repository() -> InMemoryStorylinesRepository:
    return InMemoryStorylinesRepository()


@pytest.fixture
def store(repository) -> StorylineStore:
    return StorylineStore(repository)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def make_pipeline(test_settings, repository, storage):
    def _make(
        *,
        transcriber: Optional[FakeTranscriber] = None,
        structured: Optional[FakeStructured] = None,
        images: Optional[FakeImages] = None,
        videos: Optional[FakeVideos] = None,
        with_storage: bool = True,
        poll_sleep=None,
        poll_clock=None,
    ) -> StorylinePipeline:
        return StorylinePipeline(
            test_settings,
            transcriber=transcriber or FakeTranscriber(),
            structured=structured or FakeStructured(),
            images=images or FakeImages(),
            videos=videos or FakeVideos(statuses=[VideoJobStatus(status="PENDING")]),
            storage=storage if with_storage else None,
            repository=repository,
            poll_sleep=poll_sleep,
            poll_clock=poll_clock,
        )

    return _make


def make_segments(count: int, style: str = "pixar") -> List[Segment]:
    return [
        Segment(
            id=str(idx),
            order=idx - 1,
            text=f"line {idx}",
            timestamp="00:00 - 00:05",
            style=style,
            prompt=f"scene {idx}",
        )
        for idx in range(1, count + 1)
    ]


async def seed_storyline(
    store: StorylineStore,
    count: int = 3,
    *,
    user_id: str = "user-1",
    original_video_url: Optional[str] = None,
) -> Storyline:
    return await store.create(
        StorylineCreate(
            name="Seeded",
            user_id=user_id,
            original_video_url=original_video_url,
            segments=make_segments(count),
        )
    )


async def seed_with_image(store: StorylineStore, segment_id: str = "1", count: int = 1) -> Storyline:
    storyline = await seed_storyline(store, count)
    await store.update_segment(
        storyline.id,
        segment_id,
        image_url=f"{STORAGE_BASE}/storyline-images/{storyline.id}/{segment_id}.png",
        status=SegmentStatus.IMAGE_GENERATED,
    )
    return await store.get(storyline.id)
