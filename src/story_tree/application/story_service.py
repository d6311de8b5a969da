"""Caller-facing operations over the story-tree engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from story_tree.core.bible_generator import generate_story_bible
from story_tree.core.ending_policy import wrap_threshold
from story_tree.core.generation_queue import BatchResult, process_generation_batch
from story_tree.core.image_backfill import BackfillResult, backfill_missing_images
from story_tree.core.node_generation import GenerationServices
from story_tree.core.progress import compute_progress, refresh_story_progress
from story_tree.core.prompts import DEFAULT_STYLE_TAG
from story_tree.core.tree_builder import build_story_tree
from story_tree.domain.errors import StoryNotFound, StoryNotReady
from story_tree.domain.models import (
    CREATE_STORY_ACTION,
    GENERATE_BATCH_ACTION,
    Story,
    StoryBible,
    StoryChoice,
    StoryNode,
    StoryStatus,
)
from story_tree.domain.ports import StoryRepository, UsageLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoryStatusView:
    story_id: str
    title: str
    status: StoryStatus
    progress_percent: int
    nodes_generated: int
    nodes_planned: int
    nodes_failed: int
    nodes_pending: int


@dataclass(frozen=True)
class CreatedStory:
    story: Story
    bible: StoryBible
    root: StoryNode


@dataclass(frozen=True)
class StoryTree:
    """Flat node and edge lists; callers rebuild the hierarchy from ids."""

    story: Story
    nodes: list[StoryNode]
    choices: list[StoryChoice]


class StoryTreeService:
    """Glue between quota, persistence and the generation engine."""

    def __init__(
        self,
        *,
        repository: StoryRepository,
        services: GenerationServices,
        usage_limiter: UsageLimiter,
        default_min_chapters: int = 3,
        default_max_chapters: int = 6,
        default_batch_size: int = 5,
    ) -> None:
        wrap_threshold(default_min_chapters, default_max_chapters)
        self._repository = repository
        self._services = services
        self._usage_limiter = usage_limiter
        self._default_min_chapters = default_min_chapters
        self._default_max_chapters = default_max_chapters
        self._default_batch_size = default_batch_size

    def _require_story(self, story_id: str) -> Story:
        story = self._repository.get_story(story_id=story_id)
        if story is None:
            raise StoryNotFound(f"Story {story_id} not found")
        return story

    def create_story(
        self,
        *,
        owner_id: str,
        premise: str,
        style_tag: str = DEFAULT_STYLE_TAG,
        audience: str = "adult",
        tone: str = "dramatic",
        min_chapters: int | None = None,
        max_chapters: int | None = None,
    ) -> CreatedStory:
        """Generate the bible and the root chapter for a new story.

        Quota is consumed before any generation starts. A failure after the
        story record exists leaves it `failed` and re-raises.
        """
        if not premise.strip():
            raise ValueError("premise must be non-empty.")
        resolved_min = min_chapters if min_chapters is not None else self._default_min_chapters
        resolved_max = max_chapters if max_chapters is not None else self._default_max_chapters
        wrap_threshold(resolved_min, resolved_max)
        self._usage_limiter.enforce(owner_id=owner_id, action=CREATE_STORY_ACTION)

        story = self._repository.create_story(
            owner_id=owner_id,
            premise=premise.strip(),
            style_tag=style_tag,
            audience=audience,
            tone=tone,
            min_chapters=resolved_min,
            max_chapters=resolved_max,
        )
        logger.info("story.created story_id=%s owner_id=%s", story.story_id, owner_id)
        try:
            bible = generate_story_bible(
                text_generator=self._services.text_generator,
                premise=story.premise,
                style_tag=style_tag,
                audience=audience,
                tone=tone,
                min_chapters=resolved_min,
                max_chapters=resolved_max,
            )
            self._repository.save_bible(story_id=story.story_id, bible=bible)
        except Exception:
            self._repository.mark_story_failed(story_id=story.story_id)
            logger.exception("story.bible_failed story_id=%s", story.story_id)
            raise

        root = build_story_tree(
            repository=self._repository,
            services=self._services,
            story_id=story.story_id,
        )
        return CreatedStory(story=self._require_story(story.story_id), bible=bible, root=root)

    def read_story_status(self, *, story_id: str) -> StoryStatusView:
        story = self._require_story(story_id)
        snapshot = compute_progress(self._repository.count_nodes(story_id=story_id))
        return StoryStatusView(
            story_id=story.story_id,
            title=story.title,
            status=story.status,
            progress_percent=snapshot.percent,
            nodes_generated=snapshot.nodes_generated,
            nodes_planned=snapshot.nodes_planned,
            nodes_failed=snapshot.nodes_failed,
            nodes_pending=snapshot.nodes_pending,
        )

    def generate_next_batch(self, *, story_id: str, max_nodes: int | None = None) -> BatchResult:
        story = self._require_story(story_id)
        self._usage_limiter.enforce(owner_id=story.owner_id, action=GENERATE_BATCH_ACTION)
        return process_generation_batch(
            repository=self._repository,
            services=self._services,
            story_id=story_id,
            max_nodes=max_nodes if max_nodes is not None else self._default_batch_size,
        )

    def get_story_tree(self, *, story_id: str) -> StoryTree:
        story = self._require_story(story_id)
        return StoryTree(
            story=story,
            nodes=self._repository.list_nodes(story_id=story_id),
            choices=self._repository.list_choices(story_id=story_id),
        )

    def get_story_bible(self, *, story_id: str) -> StoryBible:
        self._require_story(story_id)
        bible = self._repository.get_bible(story_id=story_id)
        if bible is None:
            raise StoryNotReady(f"Story {story_id} has no bible.")
        return bible

    def requeue_failed_nodes(self, *, story_id: str) -> int:
        """Return failed nodes to the queue so a later batch can retry them."""
        story = self._require_story(story_id)
        if story.status != "generating":
            raise StoryNotReady(f"Story {story_id} is {story.status}; nothing can be requeued.")
        requeued = self._repository.requeue_failed_nodes(story_id=story_id)
        refresh_story_progress(repository=self._repository, story_id=story_id)
        logger.info("story.requeue story_id=%s requeued=%s", story_id, requeued)
        return requeued

    def reclaim_stale_nodes(self, *, story_id: str, stale_after_seconds: int) -> int:
        """Fail nodes whose claim is older than `stale_after_seconds`."""
        if stale_after_seconds <= 0:
            raise ValueError("stale_after_seconds must be positive.")
        self._require_story(story_id)
        cutoff = (datetime.now(UTC) - timedelta(seconds=stale_after_seconds)).isoformat()
        reclaimed = self._repository.fail_stale_claims(story_id=story_id, claimed_before_utc=cutoff)
        if reclaimed:
            refresh_story_progress(repository=self._repository, story_id=story_id)
            logger.warning("story.reclaim story_id=%s reclaimed=%s", story_id, reclaimed)
        return reclaimed

    def backfill_missing_images(self, *, story_id: str, max_nodes: int | None = None) -> BackfillResult:
        """Retry illustrations for ready nodes that were saved without one."""
        story = self._require_story(story_id)
        self._usage_limiter.enforce(owner_id=story.owner_id, action=GENERATE_BATCH_ACTION)
        return backfill_missing_images(
            repository=self._repository,
            services=self._services,
            story_id=story_id,
            max_nodes=max_nodes if max_nodes is not None else self._default_batch_size,
        )
