"""
Property-based tests for the character concept stage.

Property: with four requested portraits of which any subset fails, the stage
fails only when every portrait failed, and otherwise reports an accurate
"N/4" count and returns only the successful concepts.
"""

import asyncio

from hypothesis import given, settings, strategies as st

from conftest import FakeImages, FakeStorage, FakeStructured, FakeTranscriber, FakeVideos
from storyline.core.config import Settings
from storyline.repositories.storylines import InMemoryStorylinesRepository
from storyline.services.characters import character_tool
from storyline.services.pipeline import StorylinePipeline

CHARACTERS = {
    "characters": [
        {"name": f"Bot {i}", "description": f"robot variant {i}"} for i in range(1, 5)
    ]
}


def _structured(payload=None) -> FakeStructured:
    return FakeStructured({character_tool().name: payload if payload is not None else CHARACTERS})


@settings(max_examples=50, deadline=None)
@given(st.sets(st.integers(min_value=1, max_value=4)))
def test_partial_success_reported_accurately(failing):
    images = FakeImages(should_fail=lambda prompt: any(f"robot variant {i}." in prompt for i in failing))
    pipeline = StorylinePipeline(
        Settings(openai_api_key="k", runway_api_key="k"),
        transcriber=FakeTranscriber(),
        structured=_structured(),
        images=images,
        videos=FakeVideos(),
        storage=FakeStorage(),
        repository=InMemoryStorylinesRepository(),
    )
    result = asyncio.run(pipeline.run_character_pipeline("a robot learns to paint", "pixar"))

    succeeded = 4 - len(failing)
    assert len(images.prompts) == 4
    if succeeded == 0:
        assert not result.success
        assert result.data.characters == []
    else:
        assert result.success
        assert result.message == f"Successfully generated {succeeded}/4 character concepts."
        ids = [c.id for c in result.data.characters]
        assert ids == [f"char-{i}" for i in range(1, 5) if i not in failing]
        assert all(c.image_url.startswith("data:image/png;base64,") for c in result.data.characters)


def test_wrong_character_count_is_a_failure(make_pipeline):
    payload = {"characters": CHARACTERS["characters"][:3]}
    images = FakeImages()
    pipeline = make_pipeline(structured=_structured(payload), images=images)

    result = asyncio.run(pipeline.run_character_pipeline("a robot story", "pixar"))

    assert not result.success
    assert images.prompts == []


def test_transcript_truncated_to_word_limit(make_pipeline):
    structured = _structured()
    pipeline = make_pipeline(structured=structured)
    transcript = " ".join(f"w{i}" for i in range(500))

    asyncio.run(pipeline.run_character_pipeline(transcript, "pixar"))

    _, user_prompt, _ = structured.calls[0]
    words = user_prompt.split("\n\n", 1)[1].split()
    assert len(words) == 200
    assert words[-1] == "w199"


def test_style_name_and_structured_guide_used(make_pipeline):
    structured = _structured()
    images = FakeImages()
    pipeline = make_pipeline(structured=structured, images=images)

    asyncio.run(pipeline.run_character_pipeline("story", "pixar"))

    system_prompt, _, _ = structured.calls[0]
    assert "Style: Pixar" in system_prompt
    assert images.prompts[0].startswith("Generate a character portrait: robot variant 1. Style: {")


def test_invalid_style_rejected(make_pipeline):
    structured = _structured()
    pipeline = make_pipeline(structured=structured)

    result = asyncio.run(pipeline.run_character_pipeline("story", "watercolor"))

    assert not result.success
    assert result.message == "Invalid style provided: watercolor"
    assert structured.calls == []


def test_empty_transcript_rejected(make_pipeline):
    result = asyncio.run(make_pipeline().run_character_pipeline("   ", "pixar"))
    assert not result.success
    assert result.message == "Transcript is empty."
