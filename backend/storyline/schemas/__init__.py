from storyline.schemas.storyline import (
    CharacterConcept,
    CharacterRequest,
    CharacterData,
    CharacterDetail,
    GeneratedImage,
    ImageGenerationRequest,
    ImageGenerationData,
    ScenePrompt,
    Segment,
    SegmentPromptUpdate,
    SegmentStatus,
    SelectedSegment,
    StageResult,
    Storyline,
    StorylineCreate,
    StorylineStatus,
    TranscriptSceneData,
    TranscriptUnit,
    VideoJobOwner,
    VideoSubmissionData,
)

__all__ = [
    "CharacterConcept",
    "CharacterRequest",
    "CharacterData",
    "CharacterDetail",
    "GeneratedImage",
    "ImageGenerationRequest",
    "ImageGenerationData",
    "ScenePrompt",
    "Segment",
    "SegmentPromptUpdate",
    "SegmentStatus",
    "SelectedSegment",
    "StageResult",
    "Storyline",
    "StorylineCreate",
    "StorylineStatus",
    "TranscriptSceneData",
    "TranscriptUnit",
    "VideoJobOwner",
    "VideoSubmissionData",
]
