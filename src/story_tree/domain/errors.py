"""Error taxonomy shared by the engine, adapters and API."""

from __future__ import annotations


class StoryEngineError(RuntimeError):
    """Base class for every engine-raised error."""


class ValidationError(StoryEngineError):
    """Generator output could not be parsed into the expected schema."""


class BibleInvalid(ValidationError):
    """Story bible output was unparsable or missing an essential section."""


class ExternalServiceError(StoryEngineError):
    """A text, image, speech or storage service call failed."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class LimitExceededError(StoryEngineError):
    """Owner quota reached; raised before any generation work starts."""


class InvariantViolation(StoryEngineError):
    """Chapter choice cardinality disagrees with its ending state."""


class StoryNotFound(StoryEngineError):
    """No story exists for the requested id."""


class StoryNotReady(StoryEngineError):
    """Story cannot accept this operation in its current state."""


class TreeAlreadyBuilt(StoryEngineError):
    """The root node was already created for this story."""
