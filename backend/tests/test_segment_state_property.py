"""
Property-based tests for the segment status machine and storyline status derivation.

Property: a segment only ever moves along the allowed transition table,
terminal statuses never change, and a storyline is completed exactly when
every one of its segments is completed.
"""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from conftest import seed_with_image
from storyline.core.errors import IllegalTransitionError
from storyline.schemas import Segment, SegmentStatus, Storyline, StorylineStatus
from storyline.services.segment_state import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    apply_segment_update,
    derive_storyline_status,
)

status_strategy = st.sampled_from(list(SegmentStatus))


def _changes_for(target: SegmentStatus) -> dict:
    """Data a writer supplies together with each target status."""
    changes: dict = {"status": target}
    if target == SegmentStatus.IMAGE_GENERATED:
        changes["image_url"] = "https://storage.test/img.png"
    if target == SegmentStatus.VIDEO_PROCESSING:
        changes["video_job_id"] = "job-1"
    if target == SegmentStatus.COMPLETED:
        changes["video_url"] = "https://storage.test/vid.mp4"
    return changes


def _fresh_segment() -> Segment:
    return Segment(id="1", order=0, text="hello", style="pixar", prompt="a scene")


@settings(max_examples=200)
@given(st.lists(status_strategy, min_size=1, max_size=8))
def test_only_allowed_transitions_are_applied(targets):
    segment = _fresh_segment()
    for target in targets:
        before = segment.status
        try:
            segment = apply_segment_update(segment, _changes_for(target))
        except IllegalTransitionError:
            assert before in TERMINAL_STATUSES or target not in ALLOWED_TRANSITIONS[before]
            assert before in TERMINAL_STATUSES or target != before
            continue
        assert before not in TERMINAL_STATUSES
        assert target == before or target in ALLOWED_TRANSITIONS[before]


@settings(max_examples=100)
@given(st.lists(status_strategy, min_size=1, max_size=8))
def test_completed_segment_always_has_image_and_video(targets):
    segment = _fresh_segment()
    for target in targets:
        try:
            segment = apply_segment_update(segment, _changes_for(target))
        except IllegalTransitionError:
            continue
        if segment.status == SegmentStatus.COMPLETED:
            assert segment.image_url
            assert segment.video_url


def test_video_processing_requires_job_id():
    segment = apply_segment_update(_fresh_segment(), _changes_for(SegmentStatus.IMAGE_GENERATED))
    with pytest.raises(IllegalTransitionError):
        apply_segment_update(segment, {"status": SegmentStatus.VIDEO_PROCESSING})


def test_image_url_is_never_cleared():
    segment = apply_segment_update(_fresh_segment(), _changes_for(SegmentStatus.IMAGE_GENERATED))
    with pytest.raises(IllegalTransitionError):
        apply_segment_update(segment, {"image_url": None})


def test_image_can_be_superseded_while_image_generated():
    segment = apply_segment_update(_fresh_segment(), _changes_for(SegmentStatus.IMAGE_GENERATED))
    updated = apply_segment_update(
        segment, {"image_url": "https://storage.test/new.png", "status": SegmentStatus.IMAGE_GENERATED}
    )
    assert updated.image_url == "https://storage.test/new.png"


def test_pending_cannot_fail_directly():
    with pytest.raises(IllegalTransitionError):
        apply_segment_update(_fresh_segment(), {"status": SegmentStatus.FAILED})


@settings(max_examples=200)
@given(st.lists(status_strategy, min_size=1, max_size=12))
def test_storyline_completed_iff_every_segment_completed(statuses):
    storyline = Storyline(
        name="s",
        user_id="u",
        segments=[
            Segment(id=str(i), order=i, text="t", style="pixar", status=status)
            for i, status in enumerate(statuses)
        ],
    )
    derived = derive_storyline_status(storyline)
    all_completed = all(s == SegmentStatus.COMPLETED for s in statuses)
    assert (derived == StorylineStatus.COMPLETED) == all_completed
    if derived == StorylineStatus.FAILED:
        assert all(s in TERMINAL_STATUSES for s in statuses)
        assert SegmentStatus.FAILED in statuses
    if any(s not in TERMINAL_STATUSES for s in statuses):
        assert derived == StorylineStatus.PROCESSING


def _completed_segment() -> Segment:
    segment = _fresh_segment()
    for target in (SegmentStatus.IMAGE_GENERATED, SegmentStatus.VIDEO_PROCESSING, SegmentStatus.COMPLETED):
        segment = apply_segment_update(segment, _changes_for(target))
    return segment


@pytest.mark.parametrize("target", list(SegmentStatus))
def test_completed_segment_accepts_no_further_writes(target):
    segment = _completed_segment()
    with pytest.raises(IllegalTransitionError):
        apply_segment_update(segment, {**_changes_for(target), "video_url": "https://storage.test/other.mp4"})


def test_failed_segment_keeps_first_failure_reason():
    segment = apply_segment_update(_fresh_segment(), _changes_for(SegmentStatus.IMAGE_GENERATED))
    segment = apply_segment_update(
        segment, {"status": SegmentStatus.FAILED, "metadata": {"failure_reason": "first"}}
    )
    with pytest.raises(IllegalTransitionError):
        apply_segment_update(segment, {"status": SegmentStatus.FAILED, "metadata": {"failure_reason": "second"}})
    assert segment.metadata["failure_reason"] == "first"


def test_second_completion_does_not_duplicate_video_cache(store):
    async def scenario():
        storyline = await seed_with_image(store)
        await store.update_segment(storyline.id, "1", video_job_id="job-1", status=SegmentStatus.VIDEO_PROCESSING)
        await store.complete_video(storyline.id, "1", "https://storage.test/a.mp4", "job-1")
        with pytest.raises(IllegalTransitionError):
            await store.complete_video(storyline.id, "1", "https://storage.test/b.mp4", "job-1")
        return await store.get(storyline.id)

    stored = asyncio.run(scenario())

    assert stored.generated_video_urls == ["https://storage.test/a.mp4"]
    assert stored.segments[0].video_url == "https://storage.test/a.mp4"
