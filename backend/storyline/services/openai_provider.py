"""OpenAI-compatible adapter for transcription, tool calling and image generation.

Transcription may point at a different OpenAI-compatible host (for example a
hosted Whisper endpoint) through ``TRANSCRIPTION_BASE_URL``.
"""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from openai import APIError, AsyncOpenAI

from storyline.core.config import Settings
from storyline.core.errors import (
    ProviderConfigurationError,
    ProviderError,
    StructuredOutputError,
    TranscriptionError,
)
from storyline.services.providers import (
    GeneratedImagePayload,
    RawTranscriptSegment,
    StructuredTool,
)

logger = structlog.get_logger()


def _segment_value(segment, attr: str, default: float | str = ""):
    if isinstance(segment, dict):
        return segment.get(attr, default)
    return getattr(segment, attr, default)


class OpenAIProvider:
    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        chat_model: str,
        image_model: str,
        transcription_model: str,
        transcription_client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._client = client
        self._transcription_client = transcription_client or client
        self.chat_model = chat_model
        self.image_model = image_model
        self.transcription_model = transcription_model

    async def transcribe(self, audio_path: Path, audio_format: str) -> List[RawTranscriptSegment]:
        logger.info("openai.transcribe.request", model=self.transcription_model, format=audio_format)
        try:
            with open(audio_path, "rb") as f:
                resp = await self._transcription_client.audio.transcriptions.create(
                    model=self.transcription_model,
                    file=f,
                    response_format="verbose_json",
                    timestamp_granularities=["segment"],
                )
        except APIError as exc:
            raise TranscriptionError(f"Transcription provider rejected the audio: {exc}") from exc

        raw_segments = getattr(resp, "segments", None) or []
        return [
            RawTranscriptSegment(
                text=str(_segment_value(seg, "text", "")).strip(),
                start=float(_segment_value(seg, "start", 0.0)),
                end=float(_segment_value(seg, "end", 0.0)),
            )
            for seg in raw_segments
        ]

    async def generate_structured(
        self, system_prompt: str, user_prompt: str, tool: StructuredTool
    ) -> Dict[str, Any]:
        logger.info("openai.structured.request", model=self.chat_model, tool=tool.name)
        try:
            resp = await self._client.chat.completions.create(
                model=self.chat_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.parameters,
                        },
                    }
                ],
                tool_choice={"type": "function", "function": {"name": tool.name}},
            )
        except APIError as exc:
            raise ProviderError(f"Structured generation failed: {exc}") from exc

        tool_calls = resp.choices[0].message.tool_calls if resp.choices else None
        if not tool_calls:
            raise StructuredOutputError(f"No tool calls returned for {tool.name}")
        try:
            parsed = json.loads(tool_calls[0].function.arguments)
        except json.JSONDecodeError as exc:
            raise StructuredOutputError(f"Tool {tool.name} returned invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise StructuredOutputError(f"Tool {tool.name} returned {type(parsed).__name__}, expected an object")
        return parsed

    async def generate_image(self, prompt: str, size: str, quality: str) -> GeneratedImagePayload:
        try:
            resp = await self._client.images.generate(
                model=self.image_model,
                prompt=prompt,
                n=1,
                size=size,
                quality=quality,
            )
        except APIError as exc:
            raise ProviderError(f"Image generation failed: {exc}") from exc

        image = resp.data[0] if resp.data else None
        if image is None or not image.b64_json:
            raise ProviderError("Invalid response from image provider: no image data found")
        return GeneratedImagePayload(
            image_bytes=base64.b64decode(image.b64_json),
            revised_prompt=getattr(image, "revised_prompt", None),
        )


def build_openai_provider(settings: Settings) -> OpenAIProvider:
    if not settings.openai_api_key:
        raise ProviderConfigurationError("OPENAI_API_KEY is required in environment or .env")
    client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    transcription_client = None
    if settings.transcription_base_url or settings.transcription_api_key:
        transcription_client = AsyncOpenAI(
            api_key=settings.transcription_api_key or settings.openai_api_key,
            base_url=settings.transcription_base_url,
        )
    return OpenAIProvider(
        client,
        chat_model=settings.chat_model,
        image_model=settings.image_model,
        transcription_model=settings.transcription_model,
        transcription_client=transcription_client,
    )
