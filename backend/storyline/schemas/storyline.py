from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class SegmentStatus(str, Enum):
    """Lifecycle states for one scene/shot segment."""

    PENDING = "pending"
    IMAGE_GENERATED = "image_generated"
    VIDEO_PROCESSING = "video_processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StorylineStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Segment(BaseModel):
    id: str
    order: int
    text: str
    timestamp: str = ""
    style: str
    prompt: str = ""
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    video_job_id: Optional[str] = None
    status: SegmentStatus = SegmentStatus.PENDING
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (SegmentStatus.COMPLETED, SegmentStatus.FAILED)


class Storyline(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    user_id: str
    original_video_url: Optional[str] = None
    status: StorylineStatus = StorylineStatus.PROCESSING
    generated_image_urls: List[str] = Field(default_factory=list)
    generated_video_urls: List[str] = Field(default_factory=list)
    segments: List[Segment] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(from_attributes=True)

    def find_segment(self, segment_id: str) -> Optional[Segment]:
        for segment in self.segments:
            if segment.id == segment_id:
                return segment
        return None


class StorylineCreate(BaseModel):
    name: str
    user_id: str
    original_video_url: Optional[str] = None
    segments: List[Segment]


class TranscriptUnit(BaseModel):
    """One time-stamped piece of transcribed speech."""

    text: str
    start: float
    end: float

    @property
    def timestamp(self) -> str:
        return f"{format_offset(self.start)} - {format_offset(self.end)}"


class ScenePrompt(BaseModel):
    id: str
    text: str
    timestamp: str
    prompt: str
    style: str
    is_selected: bool = True


class CharacterDetail(BaseModel):
    name: str
    description: str


class CharacterConcept(BaseModel):
    id: str
    name: str
    description: str
    image_url: str
    revised_prompt: Optional[str] = None


class SelectedSegment(BaseModel):
    """A segment picked for image generation, as sent by the client."""

    id: str
    text: str = ""
    prompt: str
    style: str


class GeneratedImage(BaseModel):
    segment_id: str
    prompt: str
    style: str
    image_url: str
    revised_prompt: Optional[str] = None


class VideoJobOwner(BaseModel):
    job_id: str
    storyline_id: str
    segment_id: str


class StageResult(BaseModel, Generic[T]):
    """Uniform result every pipeline stage returns to the caller."""

    success: bool
    message: str
    data: Optional[T] = None

    @classmethod
    def ok(cls, message: str, data: Optional[T] = None) -> "StageResult[T]":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Optional[T] = None) -> "StageResult[T]":
        return cls(success=False, message=message, data=data)


class TranscriptSceneData(BaseModel):
    storyline_id: Optional[str] = None
    scene_prompts: List[ScenePrompt]
    transcript_text: str
    style: str


class CharacterData(BaseModel):
    characters: List[CharacterConcept]


class ImageGenerationData(BaseModel):
    generated_images: List[GeneratedImage]


class VideoSubmissionData(BaseModel):
    job_id: str


def format_offset(seconds: float) -> str:
    """Render an offset in seconds as ``mm:ss``."""
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes:02d}:{secs:02d}"


class CharacterRequest(BaseModel):
    transcript_text: str
    style: str


class ImageGenerationRequest(BaseModel):
    segments: List[SelectedSegment]
    character: Optional[CharacterDetail] = None
    storyline_id: Optional[str] = None


class SegmentPromptUpdate(BaseModel):
    prompt: str = Field(min_length=1)
