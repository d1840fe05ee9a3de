"""Read-modify-write access to the Storyline aggregate.

Every writer goes through ``StorylineStore.mutate``: load the full record,
apply a pure mutator, recompute the storyline status, and write the whole
record back conditioned on the version that was read. A version conflict
re-reads and re-applies the mutator a bounded number of times.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

import structlog

from storyline.core.errors import (
    ConcurrentUpdateError,
    InvalidInputError,
    SegmentNotFoundError,
    StorylineNotFoundError,
)
from storyline.repositories.storylines import StorylinesRepository
from storyline.schemas import SegmentStatus, Storyline, StorylineCreate
from storyline.services.segment_state import (
    IMAGE_WRITABLE_STATUSES,
    apply_segment_update,
    derive_storyline_status,
)

logger = structlog.get_logger()

Mutator = Callable[[Storyline], Storyline]


def _replace_segment(storyline: Storyline, segment_id: str, changes: Dict) -> Storyline:
    segments = list(storyline.segments)
    for idx, segment in enumerate(segments):
        if segment.id == segment_id:
            segments[idx] = apply_segment_update(segment, changes)
            return storyline.model_copy(update={"segments": segments})
    raise SegmentNotFoundError(storyline.id, segment_id)


class StorylineStore:
    def __init__(self, repository: StorylinesRepository, *, max_retries: int = 3) -> None:
        self.repository = repository
        self.max_retries = max_retries

    async def create(self, payload: StorylineCreate) -> Storyline:
        storyline = await self.repository.create(payload)
        logger.info("storyline.created", storyline_id=storyline.id, segments=len(storyline.segments))
        return storyline

    async def get(self, storyline_id: str) -> Storyline:
        storyline = await self.repository.get(storyline_id)
        if storyline is None:
            raise StorylineNotFoundError(storyline_id)
        return storyline

    async def list_for_user(self, user_id: str) -> List[Storyline]:
        return await self.repository.list_for_user(user_id)

    async def mutate(self, storyline_id: str, mutator: Mutator) -> Storyline:
        attempt = 0
        while True:
            current = await self.get(storyline_id)
            changed = mutator(current.model_copy(deep=True))
            changed = changed.model_copy(update={"status": derive_storyline_status(changed)})
            try:
                return await self.repository.update(changed)
            except ConcurrentUpdateError:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(
                        "storyline.write_conflict_exhausted",
                        storyline_id=storyline_id,
                        attempts=attempt,
                    )
                    raise
                logger.warning("storyline.write_conflict_retry", storyline_id=storyline_id, attempt=attempt)

    async def update_segment(self, storyline_id: str, segment_id: str, **changes) -> Storyline:
        return await self.mutate(
            storyline_id, lambda storyline: _replace_segment(storyline, segment_id, changes)
        )

    async def update_segment_prompt(self, storyline_id: str, segment_id: str, prompt: str) -> Storyline:
        """Edit a prompt; only allowed before image generation starts."""

        def _apply(storyline: Storyline) -> Storyline:
            segment = storyline.find_segment(segment_id)
            if segment is None:
                raise SegmentNotFoundError(storyline_id, segment_id)
            if segment.status != SegmentStatus.PENDING:
                raise InvalidInputError(
                    f"Segment {segment_id} prompt is locked once image generation has started"
                )
            return _replace_segment(storyline, segment_id, {"prompt": prompt})

        return await self.mutate(storyline_id, _apply)

    async def apply_generated_images(
        self, storyline_id: str, image_urls: Dict[str, str]
    ) -> Tuple[Storyline, List[str]]:
        """Set image URLs for many segments and extend the image cache in one write.

        Segments that are missing or already past image generation are left
        untouched. Returns the stored storyline and the ids that were applied.
        """
        applied: List[str] = []

        def _apply(storyline: Storyline) -> Storyline:
            applied.clear()
            new_urls: List[str] = []
            for segment_id, url in image_urls.items():
                segment = storyline.find_segment(segment_id)
                if segment is None:
                    logger.warning("storyline.image_segment_missing", storyline_id=storyline_id, segment_id=segment_id)
                    continue
                if segment.status not in IMAGE_WRITABLE_STATUSES:
                    logger.warning(
                        "storyline.image_segment_locked",
                        storyline_id=storyline_id,
                        segment_id=segment_id,
                        status=segment.status.value,
                    )
                    continue
                storyline = _replace_segment(
                    storyline,
                    segment_id,
                    {"image_url": url, "status": SegmentStatus.IMAGE_GENERATED},
                )
                applied.append(segment_id)
                new_urls.append(url)
            return storyline.model_copy(
                update={"generated_image_urls": [*storyline.generated_image_urls, *new_urls]}
            )

        stored = await self.mutate(storyline_id, _apply)
        return stored, list(applied)

    async def complete_video(
        self, storyline_id: str, segment_id: str, video_url: str, job_id: Optional[str] = None
    ) -> Storyline:
        """Mark a segment completed, append to the video cache, promote the storyline."""

        def _apply(storyline: Storyline) -> Storyline:
            changes = {"video_url": video_url, "status": SegmentStatus.COMPLETED}
            if job_id:
                changes["video_job_id"] = job_id
            storyline = _replace_segment(storyline, segment_id, changes)
            return storyline.model_copy(
                update={"generated_video_urls": [*storyline.generated_video_urls, video_url]}
            )

        stored = await self.mutate(storyline_id, _apply)
        logger.info(
            "storyline.segment_completed",
            storyline_id=storyline_id,
            segment_id=segment_id,
            storyline_status=stored.status.value,
        )
        return stored

    async def fail_segment(self, storyline_id: str, segment_id: str, reason: str) -> Storyline:
        """Move a segment to ``failed`` and keep the reason in its metadata."""

        def _apply(storyline: Storyline) -> Storyline:
            segment = storyline.find_segment(segment_id)
            if segment is None:
                raise SegmentNotFoundError(storyline_id, segment_id)
            metadata = {**segment.metadata, "failure_reason": reason}
            return _replace_segment(
                storyline, segment_id, {"status": SegmentStatus.FAILED, "metadata": metadata}
            )

        stored = await self.mutate(storyline_id, _apply)
        logger.warning(
            "storyline.segment_failed",
            storyline_id=storyline_id,
            segment_id=segment_id,
            reason=reason,
            storyline_status=stored.status.value,
        )
        return stored

    async def delete(self, storyline_id: str) -> bool:
        return await self.repository.delete(storyline_id)
