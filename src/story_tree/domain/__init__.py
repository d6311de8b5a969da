"""Domain models, errors and ports for story-tree generation."""

from story_tree.domain.errors import (
    BibleInvalid,
    ExternalServiceError,
    InvariantViolation,
    LimitExceededError,
    StoryEngineError,
    StoryNotFound,
    StoryNotReady,
    TreeAlreadyBuilt,
    ValidationError,
)
from story_tree.domain.models import (
    ChapterDraft,
    ContextEntry,
    Story,
    StoryBible,
    StoryChoice,
    StoryNode,
)
from story_tree.domain.ports import (
    ImageGenerator,
    ObjectStorage,
    SpeechSynthesizer,
    StoryRepository,
    TextGenerator,
    UsageLimiter,
)

__all__ = [
    "BibleInvalid",
    "ChapterDraft",
    "ContextEntry",
    "ExternalServiceError",
    "ImageGenerator",
    "InvariantViolation",
    "LimitExceededError",
    "ObjectStorage",
    "SpeechSynthesizer",
    "Story",
    "StoryBible",
    "StoryChoice",
    "StoryEngineError",
    "StoryNode",
    "StoryNotFound",
    "StoryNotReady",
    "StoryRepository",
    "TextGenerator",
    "TreeAlreadyBuilt",
    "UsageLimiter",
    "ValidationError",
]
