"""Video stage: submit image-to-video jobs and poll them to a terminal state.

Per job: submitted -> polling -> succeeded | failed, with "not yet terminal"
looping back to polling. Poll loops are asyncio tasks keyed by job id; the
storyline records stay the source of truth for which jobs are outstanding.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional, Set, Tuple

import structlog

from storyline.core.errors import (
    IllegalTransitionError,
    InvalidInputError,
    PipelineError,
    ProviderError,
    SegmentNotFoundError,
    StorylineNotFoundError,
)
from storyline.schemas import SegmentStatus, VideoJobOwner
from storyline.services import utils
from storyline.services.providers import BlobStorage, VideoGenerationProvider
from storyline.services.storyline_store import StorylineStore

logger = structlog.get_logger()

STATUS_SUCCEEDED = "SUCCEEDED"
STATUS_FAILED = "FAILED"

PUBLIC_URL_REQUIRED = "Image must be a public URL to be processed by Runway."


def video_key(storyline_id: str, segment_id: str) -> str:
    return f"{storyline_id}/{segment_id}.mp4"


class VideoSubmitter:
    def __init__(
        self,
        videos: VideoGenerationProvider,
        store: StorylineStore,
        *,
        duration_seconds: int = 5,
        ratio: str = "720:1280",
    ) -> None:
        self.videos = videos
        self.store = store
        self.duration_seconds = duration_seconds
        self.ratio = ratio
        self._in_flight: Set[Tuple[str, str]] = set()

    async def submit(self, storyline_id: str, segment_id: str) -> str:
        """Submit one job for a segment with a public image and return its id.

        Only ``image_generated`` segments are submitted, so repeating the call
        on a segment that is processing or terminal never creates a second job.
        """
        storyline = await self.store.get(storyline_id)
        segment = storyline.find_segment(segment_id)
        if segment is None:
            raise SegmentNotFoundError(storyline_id, segment_id)
        if not segment.image_url or not segment.prompt:
            raise InvalidInputError(
                f"Segment {segment_id} not found or missing required data (imageUrl, prompt)."
            )
        if utils.is_data_uri(segment.image_url):
            raise InvalidInputError(PUBLIC_URL_REQUIRED)
        if segment.status != SegmentStatus.IMAGE_GENERATED:
            raise InvalidInputError(
                f"Segment {segment_id} is {segment.status.value}; a video can only be submitted once its image is ready."
            )

        claim = (storyline_id, segment_id)
        if claim in self._in_flight:
            raise InvalidInputError(f"Video submission for segment {segment_id} is already in progress.")
        self._in_flight.add(claim)
        try:
            try:
                job_id = await self.videos.submit_job(
                    segment.image_url, segment.prompt, self.duration_seconds, self.ratio
                )
            except ProviderError as exc:
                logger.error(
                    "video.submit_failed",
                    storyline_id=storyline_id,
                    segment_id=segment_id,
                    error=str(exc),
                )
                await self._mark_failed(storyline_id, segment_id, str(exc))
                raise

            await self.store.update_segment(
                storyline_id,
                segment_id,
                video_job_id=job_id,
                status=SegmentStatus.VIDEO_PROCESSING,
            )
        finally:
            self._in_flight.discard(claim)

        logger.info("video.submitted", storyline_id=storyline_id, segment_id=segment_id, job_id=job_id)
        return job_id

    async def _mark_failed(self, storyline_id: str, segment_id: str, reason: str) -> None:
        try:
            await self.store.fail_segment(storyline_id, segment_id, reason)
        except PipelineError as exc:
            logger.error(
                "video.mark_failed_error",
                storyline_id=storyline_id,
                segment_id=segment_id,
                error=str(exc),
            )


class VideoJobPoller:
    def __init__(
        self,
        videos: VideoGenerationProvider,
        storage: BlobStorage,
        store: StorylineStore,
        *,
        bucket: str,
        interval: float = 5.0,
        backoff_factor: float = 1.5,
        max_interval: float = 30.0,
        max_lifetime: float = 900.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.videos = videos
        self.storage = storage
        self.store = store
        self.bucket = bucket
        self.interval = interval
        self.backoff_factor = backoff_factor
        self.max_interval = max_interval
        self.max_lifetime = max_lifetime
        self._sleep = sleep
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._owners: Dict[str, VideoJobOwner] = {}

    @property
    def active_jobs(self) -> Dict[str, VideoJobOwner]:
        return {job_id: self._owners[job_id] for job_id in self._tasks if job_id in self._owners}

    def schedule(self, job_id: str, storyline_id: str, segment_id: str) -> asyncio.Task:
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing
        owner = VideoJobOwner(job_id=job_id, storyline_id=storyline_id, segment_id=segment_id)
        self._owners[job_id] = owner
        task = asyncio.create_task(self.run(owner), name=f"video-poll-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._forget(jid, _t))
        logger.info("video.poll_scheduled", job_id=job_id, storyline_id=storyline_id, segment_id=segment_id)
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            self._tasks.pop(job_id, None)
            self._owners.pop(job_id, None)

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_for_storyline(self, storyline_id: str) -> int:
        job_ids = [jid for jid, owner in self._owners.items() if owner.storyline_id == storyline_id]
        cancelled = sum(1 for jid in job_ids if self.cancel(jid))
        if cancelled:
            logger.info("video.poll_cancelled", storyline_id=storyline_id, jobs=cancelled)
        return cancelled

    def cancel_all(self) -> int:
        return sum(1 for jid in list(self._tasks) if self.cancel(jid))

    async def resume_outstanding(self) -> int:
        """Reschedule every job recorded as ``video_processing`` with a job id."""
        owners = await self.store.repository.list_video_processing()
        for owner in owners:
            self.schedule(owner.job_id, owner.storyline_id, owner.segment_id)
        logger.info("video.poll_resumed", jobs=len(owners))
        return len(owners)

    async def resolve_owner(self, job_id: str) -> Optional[VideoJobOwner]:
        owner = self._owners.get(job_id)
        if owner is not None:
            return owner
        return await self.store.repository.find_by_video_job_id(job_id)

    async def wait_all(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def poll_once(self, owner: VideoJobOwner) -> bool:
        """Check the job once and act on the result. Returns True when polling should stop."""
        try:
            status = await self.videos.get_job_status(owner.job_id)
        except ProviderError as exc:
            logger.warning("video.poll_error", job_id=owner.job_id, error=str(exc))
            return False

        state = status.status.upper()
        if state == STATUS_SUCCEEDED:
            if not status.output_url:
                logger.info("video.poll_succeeded_without_output", job_id=owner.job_id)
                return False
            return await self._complete(owner, status.output_url)
        if state == STATUS_FAILED:
            await self._fail(owner, status.failure_reason or "Video generation failed")
            return True
        logger.debug("video.poll_pending", job_id=owner.job_id, status=state)
        return False

    async def _complete(self, owner: VideoJobOwner, output_url: str) -> bool:
        storyline = await self.store.repository.get(owner.storyline_id)
        if storyline is None:
            logger.info("video.result_ignored_missing_storyline", job_id=owner.job_id, storyline_id=owner.storyline_id)
            return True
        segment = storyline.find_segment(owner.segment_id)
        if (
            segment is None
            or segment.video_job_id != owner.job_id
            or segment.status != SegmentStatus.VIDEO_PROCESSING
        ):
            logger.info("video.result_ignored_stale", job_id=owner.job_id, segment_id=owner.segment_id)
            return True

        try:
            public_url = await self.storage.upload_from_url(
                self.bucket, video_key(owner.storyline_id, owner.segment_id), output_url, "video/mp4"
            )
        except ProviderError as exc:
            logger.warning("video.upload_failed", job_id=owner.job_id, error=str(exc))
            return False

        try:
            await self.store.complete_video(owner.storyline_id, owner.segment_id, public_url, owner.job_id)
        except (StorylineNotFoundError, SegmentNotFoundError):
            logger.info("video.result_ignored_missing_storyline", job_id=owner.job_id, storyline_id=owner.storyline_id)
        except IllegalTransitionError as exc:
            logger.warning("video.complete_rejected", job_id=owner.job_id, error=str(exc))
        return True

    async def _fail(self, owner: VideoJobOwner, reason: str) -> None:
        try:
            await self.store.fail_segment(owner.storyline_id, owner.segment_id, reason)
        except (StorylineNotFoundError, SegmentNotFoundError, IllegalTransitionError) as exc:
            logger.info("video.fail_ignored", job_id=owner.job_id, error=str(exc))

    async def run(self, owner: VideoJobOwner) -> None:
        started = self._clock()
        delay = self.interval
        try:
            while True:
                await self._sleep(delay)
                try:
                    done = await self.poll_once(owner)
                except Exception as exc:
                    logger.warning(
                        "video.poll_unexpected_error",
                        job_id=owner.job_id,
                        error=repr(exc),
                        msg="treated as not yet terminal",
                    )
                    done = False
                if done:
                    return
                if self._clock() - started >= self.max_lifetime:
                    logger.warning("video.poll_timeout", job_id=owner.job_id, lifetime=self.max_lifetime)
                    try:
                        await self._fail(
                            owner, f"Timed out waiting for video job after {int(self.max_lifetime)}s"
                        )
                    except PipelineError as exc:
                        logger.error("video.timeout_not_recorded", job_id=owner.job_id, error=str(exc))
                    return
                delay = min(delay * self.backoff_factor, self.max_interval)
        except asyncio.CancelledError:
            logger.info("video.poll_stopped", job_id=owner.job_id)
            raise
