"""
Segment status transitions.

    pending -> image_generated -> video_processing -> completed
                      |                  |
                      +------> failed <--+

``completed`` and ``failed`` are terminal. Every status write to a segment
goes through ``apply_segment_update`` so the table below is the only place the
rules live.
"""
from typing import Any, Dict, FrozenSet, Mapping

from storyline.core.errors import IllegalTransitionError
from storyline.schemas import Segment, SegmentStatus, Storyline, StorylineStatus

ALLOWED_TRANSITIONS: Dict[SegmentStatus, FrozenSet[SegmentStatus]] = {
    SegmentStatus.PENDING: frozenset({SegmentStatus.IMAGE_GENERATED}),
    SegmentStatus.IMAGE_GENERATED: frozenset(
        {SegmentStatus.VIDEO_PROCESSING, SegmentStatus.FAILED}
    ),
    SegmentStatus.VIDEO_PROCESSING: frozenset(
        {SegmentStatus.COMPLETED, SegmentStatus.FAILED}
    ),
    SegmentStatus.COMPLETED: frozenset(),
    SegmentStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({SegmentStatus.COMPLETED, SegmentStatus.FAILED})

# Statuses in which a fresh image may still replace the current one.
IMAGE_WRITABLE_STATUSES = frozenset({SegmentStatus.PENDING, SegmentStatus.IMAGE_GENERATED})


def can_transition(current: SegmentStatus, target: SegmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(segment: Segment, target: SegmentStatus) -> None:
    if segment.status in TERMINAL_STATUSES:
        raise IllegalTransitionError(segment.id, segment.status.value, target.value)
    if segment.status == target:
        return
    if not can_transition(segment.status, target):
        raise IllegalTransitionError(segment.id, segment.status.value, target.value)


def apply_segment_update(segment: Segment, changes: Mapping[str, Any]) -> Segment:
    """Return a copy of ``segment`` with ``changes`` applied after checking invariants.

    Staying in the same status is allowed (for example superseding the image of
    an ``image_generated`` segment), except in a terminal status: a completed or
    failed segment accepts no further writes. Clearing an image URL is never allowed.
    """
    target = changes.get("status", segment.status)
    target = SegmentStatus(target)
    ensure_transition(segment, target)

    updated = segment.model_copy(update={**changes, "status": target})

    if segment.image_url and not updated.image_url:
        raise IllegalTransitionError(segment.id, segment.status.value, "image_url cleared")
    if target == SegmentStatus.VIDEO_PROCESSING and not updated.video_job_id:
        raise IllegalTransitionError(segment.id, segment.status.value, "video_processing without job id")
    if target == SegmentStatus.COMPLETED and not updated.video_url:
        raise IllegalTransitionError(segment.id, segment.status.value, "completed without video url")
    return updated


def derive_storyline_status(storyline: Storyline) -> StorylineStatus:
    """Storyline is completed iff every segment is completed.

    Once every segment is terminal and at least one failed there is nothing
    left to wait for, so the storyline is marked failed.
    """
    segments = storyline.segments
    if segments and all(s.status == SegmentStatus.COMPLETED for s in segments):
        return StorylineStatus.COMPLETED
    if segments and all(s.status in TERMINAL_STATUSES for s in segments):
        return StorylineStatus.FAILED
    return StorylineStatus.PROCESSING
