"""Scene image stage: one concurrent image per selected segment, one batched write."""
from typing import Dict, List, Optional

import structlog

from storyline.core.errors import InvalidInputError
from storyline.core.visual_styles import VisualStyle, get_visual_style
from storyline.schemas import CharacterDetail, GeneratedImage, SelectedSegment
from storyline.services import utils
from storyline.services.fanout import Ok, gather_settled
from storyline.services.providers import BlobStorage, GeneratedImagePayload, ImageGenerationProvider
from storyline.services.storyline_store import StorylineStore

logger = structlog.get_logger()


def character_clause(character: Optional[CharacterDetail]) -> str:
    if character is None:
        return ""
    return (
        " The main character in this image frame must follow this exact description: "
        f'"{character.description}".'
    )


def compose_scene_prompt(
    prompt: str, style: VisualStyle, character: Optional[CharacterDetail] = None
) -> str:
    base = f'Generate an image of the following scene: "{prompt}".{character_clause(character)}'
    if style.is_structured:
        return f"{base} The image must conform to the following style guide (in JSON format): {style.guide_json()}"
    return f"{base} The image must be in {style.description}."


def image_key(storyline_id: str, segment_id: str) -> str:
    return f"{storyline_id}/{segment_id}.png"


class ImageStage:
    def __init__(
        self,
        images: ImageGenerationProvider,
        storage: Optional[BlobStorage],
        store: StorylineStore,
        *,
        bucket: str,
        size: str = "1024x1536",
        quality: str = "medium",
    ) -> None:
        self.images = images
        self.storage = storage
        self.store = store
        self.bucket = bucket
        self.size = size
        self.quality = quality

    async def _generate(
        self, segment: SelectedSegment, character: Optional[CharacterDetail]
    ) -> GeneratedImagePayload:
        style = get_visual_style(segment.style)
        full_prompt = compose_scene_prompt(segment.prompt, style, character)
        logger.debug("image_stage.request", segment_id=segment.id, prompt_chars=len(full_prompt))
        return await self.images.generate_image(full_prompt, self.size, self.quality)

    async def _upload(self, storyline_id: str, segment_id: str, payload: GeneratedImagePayload) -> str:
        return await self.storage.upload(
            self.bucket, image_key(storyline_id, segment_id), payload.image_bytes, payload.content_type
        )

    async def run(
        self,
        segments: List[SelectedSegment],
        character: Optional[CharacterDetail] = None,
        storyline_id: Optional[str] = None,
    ) -> List[GeneratedImage]:
        """Generate images for every segment with a prompt.

        Without a storyline id the images come back as data URIs and nothing is
        persisted. Failed segments are simply absent from the result.
        """
        to_generate = [s for s in segments if s.prompt and s.prompt.strip()]
        if not to_generate:
            raise InvalidInputError("No valid prompts provided for image generation.")
        if storyline_id is not None:
            if self.storage is None:
                raise InvalidInputError("Storage is not configured; cannot persist generated images.")
            await self.store.get(storyline_id)

        logger.info(
            "image_stage.start",
            storyline_id=storyline_id,
            segments=len(to_generate),
            character=character.name if character else None,
        )
        outcomes = await gather_settled(
            (self._generate(segment, character) for segment in to_generate),
            labels=[segment.id for segment in to_generate],
        )
        generated = [
            (segment, outcome.value)
            for segment, outcome in zip(to_generate, outcomes)
            if isinstance(outcome, Ok)
        ]

        if storyline_id is None:
            return [
                GeneratedImage(
                    segment_id=segment.id,
                    prompt=segment.prompt,
                    style=segment.style,
                    image_url=utils.to_data_uri(payload.image_bytes, payload.content_type),
                    revised_prompt=payload.revised_prompt,
                )
                for segment, payload in generated
            ]

        uploads = await gather_settled(
            (self._upload(storyline_id, segment.id, payload) for segment, payload in generated),
            labels=[segment.id for segment, _ in generated],
        )
        uploaded: Dict[str, str] = {}
        for (segment, _), outcome in zip(generated, uploads):
            if isinstance(outcome, Ok):
                uploaded[segment.id] = outcome.value

        if not uploaded:
            logger.warning("image_stage.nothing_to_persist", storyline_id=storyline_id)
            return []

        _, applied = await self.store.apply_generated_images(storyline_id, uploaded)
        results = [
            GeneratedImage(
                segment_id=segment.id,
                prompt=segment.prompt,
                style=segment.style,
                image_url=uploaded[segment.id],
                revised_prompt=payload.revised_prompt,
            )
            for segment, payload in generated
            if segment.id in applied
        ]
        logger.info(
            "image_stage.done",
            storyline_id=storyline_id,
            succeeded=len(results),
            total=len(to_generate),
        )
        return results
