"""Turn a timestamped transcript into validated scene prompts."""
from typing import List

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from storyline.core.errors import InvalidInputError, StructuredOutputError
from storyline.schemas import ScenePrompt, TranscriptUnit
from storyline.services.providers import StructuredGenerationProvider, StructuredTool

logger = structlog.get_logger()

MAX_SCENE_PROMPTS = 20

SCENE_PROMPT_SYSTEM = """You are a visual prompt generator for AI image creation. Create simple, clear visual prompts based on video transcript segments.

RULES:
1. Keep prompts under 50 words each
2. Refer to characters as "the main character" - no physical descriptions
3. Focus on actions and scenes, not complex metaphors
4. Combine related adjacent segments when possible
5. Select up to 10 key visual moments only

Use the generate_image_prompts function with short, direct prompts."""


def scene_prompt_tool(max_prompts: int = MAX_SCENE_PROMPTS) -> StructuredTool:
    return StructuredTool(
        name="generate_image_prompts",
        description="Generates a list of image prompts for key moments in a transcript.",
        parameters={
            "type": "object",
            "properties": {
                "prompts": {
                    "type": "array",
                    "description": f"An array of up to {max_prompts} image prompt suggestions for key moments.",
                    "maxItems": max_prompts,
                    "items": {
                        "type": "object",
                        "properties": {
                            "timestamp": {
                                "type": "string",
                                "description": 'The timestamp of the original transcript segment(s), e.g., "00:08 - 00:14"',
                            },
                            "text": {
                                "type": "string",
                                "description": "The text of the original transcript segment(s).",
                            },
                            "prompt": {
                                "type": "string",
                                "description": "A detailed, creative prompt for an AI image generator.",
                            },
                        },
                        "required": ["timestamp", "text", "prompt"],
                    },
                }
            },
            "required": ["prompts"],
        },
    )


SCENE_PROMPT_TOOL = scene_prompt_tool()


class ScenePromptItem(BaseModel):
    model_config = ConfigDict(strict=True)

    timestamp: str
    text: str
    prompt: str


class ScenePromptsPayload(BaseModel):
    model_config = ConfigDict(strict=True)

    prompts: List[ScenePromptItem]


def format_transcript(units: List[TranscriptUnit]) -> str:
    return "\n".join(f"[{unit.timestamp}] {unit.text}" for unit in units)


def validate_scene_prompts(payload: dict, *, max_prompts: int = MAX_SCENE_PROMPTS) -> List[ScenePromptItem]:
    """Validate tool output without coercion. Any mismatch is a hard failure."""
    try:
        parsed = ScenePromptsPayload.model_validate(payload)
    except ValidationError as exc:
        raise StructuredOutputError(f"Scene prompts did not match the expected format: {exc}") from exc
    if len(parsed.prompts) > max_prompts:
        raise StructuredOutputError(
            f"Scene prompts returned {len(parsed.prompts)} entries, at most {max_prompts} allowed"
        )
    return parsed.prompts


async def generate_scene_prompts(
    provider: StructuredGenerationProvider,
    units: List[TranscriptUnit],
    style: str,
    *,
    max_prompts: int = MAX_SCENE_PROMPTS,
) -> List[ScenePrompt]:
    if not units:
        raise InvalidInputError("Transcript data is empty or invalid.")

    logger.info("scene_prompts.start", units=len(units), style=style)
    raw = await provider.generate_structured(
        SCENE_PROMPT_SYSTEM,
        f"Here is the full transcript:\n\n{format_transcript(units)}",
        scene_prompt_tool(max_prompts),
    )
    items = validate_scene_prompts(raw, max_prompts=max_prompts)
    if not items:
        raise StructuredOutputError("Failed to generate scene prompts from transcript.")

    prompts = [
        ScenePrompt(
            id=str(idx),
            text=item.text,
            timestamp=item.timestamp,
            prompt=item.prompt,
            style=style,
        )
        for idx, item in enumerate(items, start=1)
    ]
    logger.info("scene_prompts.done", prompts=len(prompts))
    return prompts
