from storyline.models.storyline import StorylineModel

__all__ = ["StorylineModel"]
