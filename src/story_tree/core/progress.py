"""Stateless story completion derived from node-status counts."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from story_tree.domain.errors import StoryNotFound
from story_tree.domain.models import NodeCounts, Story
from story_tree.domain.ports import StoryRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    percent: int
    nodes_generated: int
    nodes_planned: int
    nodes_failed: int
    nodes_pending: int
    fully_generated: bool


def compute_progress(counts: NodeCounts) -> ProgressSnapshot:
    """Compute ready / (ready + pending + failed); in-flight nodes count as pending."""
    outstanding = counts.pending + counts.generating
    denominator = counts.ready + outstanding + counts.failed
    percent = (counts.ready * 100) // denominator if denominator else 0
    if outstanding:
        percent = min(percent, 99)
    return ProgressSnapshot(
        percent=percent,
        nodes_generated=counts.ready,
        nodes_planned=counts.total,
        nodes_failed=counts.failed,
        nodes_pending=outstanding,
        fully_generated=counts.ready > 0 and outstanding == 0 and counts.failed == 0,
    )


def refresh_story_progress(*, repository: StoryRepository, story_id: str) -> Story:
    """Recompute and persist story aggregates from the node table."""
    snapshot = compute_progress(repository.count_nodes(story_id=story_id))
    story = repository.update_story_progress(
        story_id=story_id,
        progress_percent=snapshot.percent,
        nodes_generated=snapshot.nodes_generated,
        nodes_planned=snapshot.nodes_planned,
        nodes_failed=snapshot.nodes_failed,
        fully_generated=snapshot.fully_generated,
    )
    if story is None:
        raise StoryNotFound(f"Story {story_id} not found")
    logger.info(
        "progress.refresh story_id=%s percent=%s ready=%s planned=%s failed=%s status=%s",
        story_id,
        snapshot.percent,
        snapshot.nodes_generated,
        snapshot.nodes_planned,
        snapshot.nodes_failed,
        story.status,
    )
    return story
