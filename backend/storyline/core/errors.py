"""Exception types raised by the storyline pipeline."""


class PipelineError(RuntimeError):
    """Base class for every error the pipeline raises on purpose."""


class InvalidInputError(PipelineError):
    """Caller supplied something unusable (oversized file, unknown style, missing field)."""


class ProviderConfigurationError(PipelineError):
    """Raised when a provider adapter cannot be built from settings."""


class ProviderError(PipelineError):
    """An external provider call failed or returned an unusable payload."""


class TranscriptionError(ProviderError):
    """Speech-to-text rejected the audio or produced no segments."""


class StructuredOutputError(ProviderError):
    """Tool-calling output was missing or did not match its schema."""


class StorylineNotFoundError(PipelineError):
    def __init__(self, storyline_id: str) -> None:
        super().__init__(f"Storyline {storyline_id} not found")
        self.storyline_id = storyline_id


class SegmentNotFoundError(PipelineError):
    def __init__(self, storyline_id: str, segment_id: str) -> None:
        super().__init__(f"Segment {segment_id} not found in storyline {storyline_id}")
        self.storyline_id = storyline_id
        self.segment_id = segment_id


class IllegalTransitionError(PipelineError):
    """A segment status change outside the allowed transition table."""

    def __init__(self, segment_id: str, current: str, target: str) -> None:
        super().__init__(f"Segment {segment_id} cannot move from {current} to {target}")
        self.segment_id = segment_id
        self.current = current
        self.target = target


class ConcurrentUpdateError(PipelineError):
    """The storyline changed between read and write (version mismatch)."""

    def __init__(self, storyline_id: str, expected_version: int) -> None:
        super().__init__(
            f"Storyline {storyline_id} was modified concurrently (expected version {expected_version})"
        )
        self.storyline_id = storyline_id
        self.expected_version = expected_version
