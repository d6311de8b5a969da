"""Ports for generative services, storage and persistence."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

from story_tree.domain.models import (
    ChildSpec,
    GeneratedChapter,
    NodeCounts,
    PendingWork,
    Story,
    StoryBible,
    StoryChoice,
    StoryNode,
    StoryStatus,
)


@dataclass(frozen=True)
class TextRequest:
    """One structured-output completion request."""

    system_prompt: str
    user_prompt: str
    temperature: float
    max_tokens: int
    json_mode: bool = True


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    style_tag: str
    style_reference: str
    width: int = 1024
    height: int = 1024


@dataclass(frozen=True)
class ImageJobStatus:
    state: Literal["pending", "complete", "failed"]
    image_url: str | None = None


class TextGenerator(Protocol):
    """Returns a single structured payload, possibly wrapped in extra text."""

    def complete(self, request: TextRequest) -> str:
        ...


class ImageGenerator(Protocol):
    """Asynchronous image jobs: submit once, then poll."""

    def submit(self, request: ImageRequest) -> str:
        ...

    def poll(self, job_id: str) -> ImageJobStatus:
        ...

    def download(self, image_url: str) -> bytes:
        ...


class SpeechSynthesizer(Protocol):
    def synthesize(self, *, text: str, voice: str, speed: float) -> bytes:
        ...


class ObjectStorage(Protocol):
    def upload(self, *, data: bytes, content_type: str, key: str) -> str:
        ...


class UsageLimiter(Protocol):
    """Quota gate consulted before any generation work begins."""

    def enforce(self, *, owner_id: str, action: str) -> None:
        ...


class StoryRepository(Protocol):
    """Flat node/edge persistence for lazily materialized story trees."""

    def create_story(
        self,
        *,
        owner_id: str,
        premise: str,
        style_tag: str,
        audience: str,
        tone: str,
        min_chapters: int,
        max_chapters: int,
    ) -> Story:
        ...

    def get_story(self, *, story_id: str) -> Story | None:
        ...

    def transition_story(
        self, *, story_id: str, from_status: StoryStatus, to_status: StoryStatus
    ) -> bool:
        ...

    def mark_story_failed(self, *, story_id: str) -> None:
        ...

    def set_story_title(self, *, story_id: str, title: str) -> None:
        ...

    def set_story_cover(self, *, story_id: str, image_url: str) -> None:
        ...

    def update_story_progress(
        self,
        *,
        story_id: str,
        progress_percent: int,
        nodes_generated: int,
        nodes_planned: int,
        nodes_failed: int,
        fully_generated: bool,
    ) -> Story | None:
        ...

    def save_bible(self, *, story_id: str, bible: StoryBible) -> None:
        ...

    def get_bible(self, *, story_id: str) -> StoryBible | None:
        ...

    def create_root_node(self, *, story_id: str) -> StoryNode:
        ...

    def get_node(self, *, node_id: str) -> StoryNode | None:
        ...

    def list_pending_work(self, *, story_id: str, limit: int) -> list[PendingWork]:
        ...

    def claim_node(self, *, node_id: str) -> str | None:
        ...

    def complete_node(
        self,
        *,
        node_id: str,
        claim_id: str,
        chapter: GeneratedChapter,
        children: list[ChildSpec],
    ) -> bool:
        ...

    def fail_node(self, *, node_id: str, claim_id: str, reason: str) -> bool:
        ...

    def list_nodes_missing_images(self, *, story_id: str, limit: int) -> list[StoryNode]:
        ...

    def set_node_image(self, *, node_id: str, image_url: str) -> bool:
        ...

    def count_nodes(self, *, story_id: str) -> NodeCounts:
        ...

    def list_nodes(self, *, story_id: str) -> list[StoryNode]:
        ...

    def list_choices(self, *, story_id: str) -> list[StoryChoice]:
        ...

    def requeue_failed_nodes(self, *, story_id: str) -> int:
        ...

    def fail_stale_claims(self, *, story_id: str, claimed_before_utc: str) -> int:
        ...
