"""Generation queue processor: claims pending nodes and grows the tree one batch at a time."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Literal

from story_tree.core.node_generation import GenerationServices, generate_node_content
from story_tree.core.progress import refresh_story_progress
from story_tree.domain.errors import StoryNotFound, StoryNotReady
from story_tree.domain.models import PendingWork, Story, StoryBible, StoryStatus
from story_tree.domain.ports import StoryRepository

NodeOutcomeStatus = Literal["ready", "failed", "skipped"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeOutcome:
    """Result of one node inside a batch."""

    node_id: str
    node_key: str
    status: NodeOutcomeStatus
    error: str | None = None
    children_created: int = 0
    image_degraded: bool = False
    audio_degraded: bool = False


@dataclass(frozen=True)
class BatchResult:
    """Summary returned to the caller that triggered the batch."""

    story_id: str
    generated: int
    remaining_pending: int
    story_status: StoryStatus
    progress_percent: int
    outcomes: list[NodeOutcome] = field(default_factory=list)


def _load_story_and_bible(
    repository: StoryRepository, story_id: str
) -> tuple[Story, StoryBible]:
    story = repository.get_story(story_id=story_id)
    if story is None:
        raise StoryNotFound(f"Story {story_id} not found")
    if story.status in {"pending", "failed"}:
        raise StoryNotReady(f"Story {story_id} is {story.status}; its tree is not being generated.")
    bible = repository.get_bible(story_id=story_id)
    if bible is None:
        raise StoryNotReady(f"Story {story_id} has no bible.")
    return story, bible


def _process_one(
    *,
    repository: StoryRepository,
    services: GenerationServices,
    story: Story,
    bible: StoryBible,
    work: PendingWork,
) -> NodeOutcome:
    node = work.node
    claim_id = repository.claim_node(node_id=node.node_id)
    if claim_id is None:
        logger.info("queue.skip node_id=%s reason=claimed_elsewhere", node.node_id)
        return NodeOutcome(node_id=node.node_id, node_key=node.node_key, status="skipped")

    try:
        chapter, children = generate_node_content(
            services=services,
            story=story,
            bible=bible,
            node=node,
            choice_text=work.choice_text,
        )
        completed = repository.complete_node(
            node_id=node.node_id, claim_id=claim_id, chapter=chapter, children=children
        )
    except Exception as exc:  # noqa: BLE001
        reason = f"{type(exc).__name__}: {exc}"
        repository.fail_node(node_id=node.node_id, claim_id=claim_id, reason=reason)
        logger.warning("queue.node_failed node_id=%s node_key=%s error=%s", node.node_id, node.node_key, reason)
        return NodeOutcome(node_id=node.node_id, node_key=node.node_key, status="failed", error=reason)

    if not completed:
        # The claim was swept; whoever holds it now owns the node.
        logger.warning("queue.claim_lost node_id=%s node_key=%s", node.node_id, node.node_key)
        return NodeOutcome(
            node_id=node.node_id,
            node_key=node.node_key,
            status="skipped",
            error="claim lost before completion",
        )

    return NodeOutcome(
        node_id=node.node_id,
        node_key=node.node_key,
        status="ready",
        children_created=len(children),
        image_degraded=chapter.image_url is None,
        audio_degraded=chapter.audio_url is None,
    )


def process_generation_batch(
    *,
    repository: StoryRepository,
    services: GenerationServices,
    story_id: str,
    max_nodes: int = 5,
) -> BatchResult:
    """Generate up to `max_nodes` pending nodes, highest priority first.

    Story and bible read failures abort the invocation. Node failures are
    isolated: the node is marked `failed` and the batch moves on.
    """
    if max_nodes < 1:
        raise ValueError("max_nodes must be >= 1.")
    started = time.perf_counter()
    story, bible = _load_story_and_bible(repository, story_id)
    if story.status == "fully_generated":
        return BatchResult(
            story_id=story_id,
            generated=0,
            remaining_pending=0,
            story_status=story.status,
            progress_percent=story.progress_percent,
        )

    work_items = repository.list_pending_work(story_id=story_id, limit=max_nodes)
    logger.info(
        "queue.batch.start story_id=%s max_nodes=%s selected=%s",
        story_id,
        max_nodes,
        len(work_items),
    )
    outcomes = [
        _process_one(
            repository=repository,
            services=services,
            story=story,
            bible=bible,
            work=work,
        )
        for work in work_items
    ]

    refreshed = refresh_story_progress(repository=repository, story_id=story_id)
    counts = repository.count_nodes(story_id=story_id)
    generated = sum(1 for outcome in outcomes if outcome.status == "ready")
    logger.info(
        "queue.batch.done story_id=%s generated=%s failed=%s skipped=%s remaining=%s "
        "elapsed_seconds=%.3f",
        story_id,
        generated,
        sum(1 for outcome in outcomes if outcome.status == "failed"),
        sum(1 for outcome in outcomes if outcome.status == "skipped"),
        counts.pending,
        time.perf_counter() - started,
    )
    return BatchResult(
        story_id=story_id,
        generated=generated,
        remaining_pending=counts.pending,
        story_status=refreshed.status,
        progress_percent=refreshed.progress_percent,
        outcomes=outcomes,
    )
