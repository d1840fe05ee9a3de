"""Entry points for each storyline stage.

Every stage returns a ``StageResult``; errors raised on purpose inside a stage
are turned into a failed result here, with the error message surfaced as is.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

import structlog

from storyline.core.config import Settings
from storyline.core.errors import PipelineError, ProviderConfigurationError
from storyline.core.visual_styles import get_visual_style
from storyline.db.session import get_sessionmaker
from storyline.repositories.storylines import SqlAlchemyStorylinesRepository, StorylinesRepository
from storyline.schemas import (
    CharacterData,
    CharacterDetail,
    ImageGenerationData,
    SelectedSegment,
    StageResult,
    Storyline,
    TranscriptSceneData,
    VideoJobOwner,
    VideoSubmissionData,
)
from storyline.services.characters import generate_character_concepts
from storyline.services.images import ImageStage
from storyline.services.openai_provider import build_openai_provider
from storyline.services.providers import (
    BlobStorage,
    ImageGenerationProvider,
    SpeechToTextProvider,
    StructuredGenerationProvider,
    VideoGenerationProvider,
)
from storyline.services.runway import build_runway_provider
from storyline.services.scene_prompts import generate_scene_prompts
from storyline.services.storage import build_storage_service
from storyline.services.storyline_store import StorylineStore
from storyline.services.storylines import StorylineManager
from storyline.services.transcription import transcribe_audio, transcript_text
from storyline.services.videos import VideoJobPoller, VideoSubmitter

logger = structlog.get_logger()


class StorylinePipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        transcriber: SpeechToTextProvider,
        structured: StructuredGenerationProvider,
        images: ImageGenerationProvider,
        videos: VideoGenerationProvider,
        storage: Optional[BlobStorage],
        repository: StorylinesRepository,
        poll_sleep=None,
        poll_clock=None,
    ) -> None:
        self.settings = settings
        self.transcriber = transcriber
        self.structured = structured
        self.images = images
        self.videos = videos
        self.storage = storage
        self.store = StorylineStore(repository, max_retries=settings.storyline_write_retries)

        self.poller: Optional[VideoJobPoller] = None
        if storage is not None:
            poll_kwargs = {}
            if poll_sleep is not None:
                poll_kwargs["sleep"] = poll_sleep
            if poll_clock is not None:
                poll_kwargs["clock"] = poll_clock
            self.poller = VideoJobPoller(
                videos,
                storage,
                self.store,
                bucket=settings.video_bucket,
                interval=settings.video_poll_interval_seconds,
                backoff_factor=settings.video_poll_backoff_factor,
                max_interval=settings.video_poll_max_interval_seconds,
                max_lifetime=settings.video_poll_max_lifetime_seconds,
                **poll_kwargs,
            )

        self.manager = StorylineManager(
            self.store,
            storage,
            image_bucket=settings.image_bucket,
            video_bucket=settings.video_bucket,
            original_bucket=settings.original_video_bucket,
            poller=self.poller,
        )
        self.image_stage = ImageStage(
            images,
            storage,
            self.store,
            bucket=settings.image_bucket,
            size=settings.scene_image_size,
            quality=settings.scene_image_quality,
        )
        self.submitter = VideoSubmitter(
            videos,
            self.store,
            duration_seconds=settings.video_duration_seconds,
            ratio=settings.video_ratio,
        )

    async def run_transcript_and_scene_pipeline(
        self,
        audio: bytes,
        style: str,
        *,
        user_id: Optional[str] = None,
        file_name: Optional[str] = None,
        audio_file_name: Optional[str] = None,
        original_video_url: Optional[str] = None,
        original_video: Optional[bytes] = None,
        original_content_type: Optional[str] = None,
    ) -> StageResult[TranscriptSceneData]:
        """Transcribe, derive scene prompts and, for a known user, create the storyline."""
        try:
            get_visual_style(style)
            units = await transcribe_audio(
                self.transcriber,
                audio,
                filename=audio_file_name,
                max_bytes=self.settings.max_audio_upload_bytes,
            )
            prompts = await generate_scene_prompts(
                self.structured, units, style, max_prompts=self.settings.max_scene_prompts
            )
            storyline_id = None
            if user_id:
                if original_video is not None and original_video_url is None:
                    if len(original_video) > self.settings.max_original_video_bytes:
                        return StageResult.fail(
                            f"Video must be smaller than {self.settings.max_original_video_mb}MB."
                        )
                    original_video_url = await self.manager.upload_original(
                        user_id, original_video, file_name, original_content_type
                    )
                storyline = await self.manager.create_from_prompts(
                    user_id, prompts, file_name=file_name, original_video_url=original_video_url
                )
                storyline_id = storyline.id
        except PipelineError as exc:
            logger.error("pipeline.transcript_failed", error=str(exc))
            return StageResult.fail(str(exc))

        logger.info("pipeline.transcript_done", storyline_id=storyline_id, prompts=len(prompts))
        return StageResult.ok(
            "Transcript and prompts generated successfully.",
            TranscriptSceneData(
                storyline_id=storyline_id,
                scene_prompts=prompts,
                transcript_text=transcript_text(units),
                style=style,
            ),
        )

    async def run_character_pipeline(self, transcript: str, style: str) -> StageResult[CharacterData]:
        try:
            concepts = await generate_character_concepts(
                self.structured,
                self.images,
                transcript,
                style,
                word_limit=self.settings.character_transcript_word_limit,
                count=self.settings.character_count,
                size=self.settings.character_image_size,
                quality=self.settings.character_image_quality,
            )
        except PipelineError as exc:
            logger.error("pipeline.characters_failed", error=str(exc))
            return StageResult.fail(str(exc))

        if not concepts:
            return StageResult.fail(
                "Character image generation failed for all prompts.", CharacterData(characters=[])
            )
        return StageResult.ok(
            f"Successfully generated {len(concepts)}/{self.settings.character_count} character concepts.",
            CharacterData(characters=concepts),
        )

    async def run_image_generation_pipeline(
        self,
        selected_segments: List[SelectedSegment],
        character: Optional[CharacterDetail] = None,
        storyline_id: Optional[str] = None,
    ) -> StageResult[ImageGenerationData]:
        total = len([s for s in selected_segments if s.prompt and s.prompt.strip()])
        try:
            generated = await self.image_stage.run(selected_segments, character, storyline_id)
        except PipelineError as exc:
            logger.error("pipeline.images_failed", storyline_id=storyline_id, error=str(exc))
            return StageResult.fail(str(exc))

        if not generated:
            return StageResult.fail(
                "Image generation failed for all prompts.", ImageGenerationData(generated_images=[])
            )
        return StageResult.ok(
            f"Successfully generated {len(generated)}/{total} images.",
            ImageGenerationData(generated_images=generated),
        )

    async def submit_video_for_segment(
        self, storyline_id: str, segment_id: str
    ) -> StageResult[VideoSubmissionData]:
        try:
            job_id = await self.submitter.submit(storyline_id, segment_id)
        except PipelineError as exc:
            return StageResult.fail(str(exc))
        return StageResult.ok(
            "Successfully submitted video generation task.", VideoSubmissionData(job_id=job_id)
        )

    def poll_video_job(self, job_id: str, storyline_id: str, segment_id: str) -> asyncio.Task:
        """Start (or return the running) background poll for ``job_id``."""
        if self.poller is None:
            raise ProviderConfigurationError("Storage is not configured; video results cannot be stored.")
        return self.poller.schedule(job_id, storyline_id, segment_id)

    async def resume_video_polling(self) -> int:
        if self.poller is None:
            return 0
        return await self.poller.resume_outstanding()

    async def find_video_job(self, job_id: str) -> Optional[VideoJobOwner]:
        if self.poller is not None:
            return await self.poller.resolve_owner(job_id)
        return await self.store.repository.find_by_video_job_id(job_id)

    async def update_segment_prompt(self, storyline_id: str, segment_id: str, prompt: str) -> Storyline:
        return await self.store.update_segment_prompt(storyline_id, segment_id, prompt)

    async def get_storyline(self, storyline_id: str) -> Storyline:
        return await self.store.get(storyline_id)

    async def list_storylines(self, user_id: str) -> List[Storyline]:
        return await self.store.list_for_user(user_id)

    async def delete_storyline(self, storyline_id: str, user_id: str) -> None:
        await self.manager.delete(storyline_id, user_id)


def build_pipeline(settings: Settings, repository: Optional[StorylinesRepository] = None) -> StorylinePipeline:
    """Wire real adapters from settings. Storage is optional; without it nothing is persisted to buckets."""
    openai_provider = build_openai_provider(settings)
    storage = build_storage_service(settings) if settings.storage_configured else None
    if storage is None:
        logger.warning("pipeline.storage_not_configured")
    return StorylinePipeline(
        settings,
        transcriber=openai_provider,
        structured=openai_provider,
        images=openai_provider,
        videos=build_runway_provider(settings),
        storage=storage,
        repository=repository or SqlAlchemyStorylinesRepository(get_sessionmaker()),
    )
