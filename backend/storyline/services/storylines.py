"""Storyline lifecycle around the pipeline stages: creation, original upload, deletion."""
import time
from typing import List, Optional

import structlog

from storyline.core.errors import InvalidInputError, ProviderError, StorylineNotFoundError
from storyline.schemas import ScenePrompt, Segment, Storyline, StorylineCreate
from storyline.services import utils
from storyline.services.providers import BlobStorage
from storyline.services.storyline_store import StorylineStore
from storyline.services.videos import VideoJobPoller

logger = structlog.get_logger()


def segments_from_prompts(prompts: List[ScenePrompt]) -> List[Segment]:
    return [
        Segment(
            id=prompt.id,
            order=idx,
            text=prompt.text,
            timestamp=prompt.timestamp,
            style=prompt.style,
            prompt=prompt.prompt,
        )
        for idx, prompt in enumerate(prompts)
    ]


class StorylineManager:
    def __init__(
        self,
        store: StorylineStore,
        storage: Optional[BlobStorage],
        *,
        image_bucket: str,
        video_bucket: str,
        original_bucket: str,
        poller: Optional[VideoJobPoller] = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.image_bucket = image_bucket
        self.video_bucket = video_bucket
        self.original_bucket = original_bucket
        self.poller = poller

    async def create_from_prompts(
        self,
        user_id: str,
        prompts: List[ScenePrompt],
        *,
        file_name: Optional[str] = None,
        original_video_url: Optional[str] = None,
    ) -> Storyline:
        """Create the storyline with every segment in place, status ``processing``."""
        if not prompts:
            raise InvalidInputError("Failed to generate scene prompts from transcript.")
        return await self.store.create(
            StorylineCreate(
                name=utils.derive_storyline_name(file_name, original_video_url),
                user_id=user_id,
                original_video_url=original_video_url,
                segments=segments_from_prompts(prompts),
            )
        )

    async def upload_original(
        self,
        owner_key: str,
        data: bytes,
        file_name: Optional[str],
        content_type: Optional[str] = None,
    ) -> str:
        if self.storage is None:
            raise InvalidInputError("Storage is not configured; cannot store the original video.")
        if not data:
            raise InvalidInputError("No file provided")
        safe_name = (file_name or f"original.{utils.file_extension(file_name, 'mp4')}").replace("/", "_")
        key = f"{owner_key}/{int(time.time() * 1000)}-{safe_name}"
        url = await self.storage.upload(self.original_bucket, key, data, content_type or "video/mp4")
        logger.info("storyline.original_uploaded", key=key, bytes=len(data))
        return url

    async def delete(self, storyline_id: str, user_id: str) -> None:
        """Delete a storyline the caller owns, its stored media, and the record."""
        storyline = await self.store.repository.get(storyline_id)
        if storyline is None or storyline.user_id != user_id:
            raise StorylineNotFoundError(storyline_id)

        if self.poller is not None:
            self.poller.cancel_for_storyline(storyline_id)

        if self.storage is not None:
            for bucket in (self.image_bucket, self.video_bucket):
                keys = await self.storage.list_keys(bucket, f"{storyline_id}/")
                await self.storage.remove(bucket, keys)
            await self._remove_original(storyline)

        await self.store.delete(storyline_id)
        logger.info("storyline.deleted", storyline_id=storyline_id)

    async def _remove_original(self, storyline: Storyline) -> None:
        if not storyline.original_video_url:
            return
        key = self.storage.key_from_public_url(self.original_bucket, storyline.original_video_url)
        if key is None:
            logger.warning("storyline.original_key_unparsed", storyline_id=storyline.id)
            return
        try:
            await self.storage.remove(self.original_bucket, [key])
        except ProviderError as exc:
            logger.error("storyline.original_remove_failed", storyline_id=storyline.id, error=str(exc))
