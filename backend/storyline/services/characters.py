"""Character concept stage: four candidate characters, each with a portrait."""
from typing import List

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storyline.core.errors import InvalidInputError, StructuredOutputError
from storyline.core.visual_styles import VisualStyle, get_visual_style
from storyline.schemas import CharacterConcept, CharacterDetail
from storyline.services import utils
from storyline.services.fanout import Ok, gather_settled
from storyline.services.providers import (
    ImageGenerationProvider,
    StructuredGenerationProvider,
    StructuredTool,
)

logger = structlog.get_logger()

CHARACTER_COUNT = 4


def character_system_prompt(style: VisualStyle, count: int = CHARACTER_COUNT) -> str:
    return f"""You are a character designer. Create {count} simple character variations based on the transcript.

RULES:
1. Keep descriptions under 25 words each
2. All {count} characters should be the same type (robot, human, animal, etc.)
3. Focus on personality differences, not complex details
4. Style: {style.name}

Use the generate_character_descriptions function with short, simple descriptions."""


def character_tool(count: int = CHARACTER_COUNT) -> StructuredTool:
    return StructuredTool(
        name="generate_character_descriptions",
        description=f"Generates {count} distinct character variations based on a transcript.",
        parameters={
            "type": "object",
            "properties": {
                "characters": {
                    "type": "array",
                    "description": f"An array of exactly {count} distinct character variations.",
                    "minItems": count,
                    "maxItems": count,
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string", "description": "The character's name."},
                            "description": {
                                "type": "string",
                                "description": "A simple, clear visual description of the character in one sentence.",
                            },
                        },
                        "required": ["name", "description"],
                    },
                }
            },
            "required": ["characters"],
        },
    )


class _CharacterItem(BaseModel):
    model_config = ConfigDict(strict=True)

    name: str
    description: str


class _CharacterPayload(BaseModel):
    model_config = ConfigDict(strict=True)

    characters: List[_CharacterItem] = Field(default_factory=list)


def validate_characters(payload: dict, count: int = CHARACTER_COUNT) -> List[CharacterDetail]:
    try:
        parsed = _CharacterPayload.model_validate(payload)
    except ValidationError as exc:
        raise StructuredOutputError(f"Character data did not match the expected format: {exc}") from exc
    if len(parsed.characters) != count:
        raise StructuredOutputError(
            f"Expected exactly {count} characters, got {len(parsed.characters)}"
        )
    return [CharacterDetail(name=c.name, description=c.description) for c in parsed.characters]


def portrait_prompt(description: str, style: VisualStyle) -> str:
    if style.is_structured:
        return f"Generate a character portrait: {description}. Style: {style.guide_json()}"
    return f"Generate a character portrait: {description}. Style: {style.description}."


async def _portrait(
    images: ImageGenerationProvider,
    index: int,
    detail: CharacterDetail,
    style: VisualStyle,
    size: str,
    quality: str,
) -> CharacterConcept:
    payload = await images.generate_image(portrait_prompt(detail.description, style), size, quality)
    return CharacterConcept(
        id=f"char-{index}",
        name=detail.name,
        description=detail.description,
        image_url=utils.to_data_uri(payload.image_bytes, payload.content_type),
        revised_prompt=payload.revised_prompt,
    )


async def generate_character_concepts(
    structured: StructuredGenerationProvider,
    images: ImageGenerationProvider,
    transcript: str,
    style_name: str,
    *,
    word_limit: int = 200,
    count: int = CHARACTER_COUNT,
    size: str = "1024x1024",
    quality: str = "low",
) -> List[CharacterConcept]:
    """Return the portraits that succeeded, in request order.

    Raises ``InvalidInputError`` for an empty transcript or unknown style and
    ``StructuredOutputError`` when the model does not return exactly ``count``
    characters. An empty list means every portrait failed.
    """
    if not transcript or not transcript.strip():
        raise InvalidInputError("Transcript is empty.")
    style = get_visual_style(style_name)

    truncated = utils.truncate_words(transcript, word_limit)
    logger.info("characters.describe.start", words=len(truncated.split()), style=style_name)
    raw = await structured.generate_structured(
        character_system_prompt(style, count),
        f"Here is the full transcript:\n\n{truncated}",
        character_tool(count),
    )
    details = validate_characters(raw, count)

    outcomes = await gather_settled(
        (
            _portrait(images, idx, detail, style, size, quality)
            for idx, detail in enumerate(details, start=1)
        ),
        labels=[f"char-{idx}" for idx in range(1, len(details) + 1)],
    )
    concepts = [outcome.value for outcome in outcomes if isinstance(outcome, Ok)]
    if len(concepts) != count:
        logger.warning("characters.partial", expected=count, generated=len(concepts))
    logger.info("characters.done", generated=len(concepts))
    return concepts
