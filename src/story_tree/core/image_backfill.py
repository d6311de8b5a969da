"""Fill illustrations that degraded during generation, then settle the story cover."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from story_tree.core.media import image_object_key, render_illustration
from story_tree.core.node_generation import GenerationServices
from story_tree.domain.errors import StoryNotFound, StoryNotReady
from story_tree.domain.models import ROOT_NODE_KEY, Story
from story_tree.domain.ports import StoryRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackfillResult:
    story_id: str
    attempted: int
    filled: int
    still_missing: int
    cover_image_url: str | None


def _settle_cover(repository: StoryRepository, story: Story) -> str | None:
    if story.cover_image_url:
        return story.cover_image_url
    root = next(
        (node for node in repository.list_nodes(story_id=story.story_id) if node.node_key == ROOT_NODE_KEY),
        None,
    )
    if root is None or not root.image_url:
        return None
    repository.set_story_cover(story_id=story.story_id, image_url=root.image_url)
    return root.image_url


def backfill_missing_images(
    *,
    repository: StoryRepository,
    services: GenerationServices,
    story_id: str,
    max_nodes: int = 10,
) -> BackfillResult:
    """Re-illustrate up to `max_nodes` ready nodes that have no image.

    A node that still fails keeps `image_url = None` and is picked up by the
    next run. Node content and status are never touched.
    """
    if max_nodes < 1:
        raise ValueError("max_nodes must be >= 1.")
    story = repository.get_story(story_id=story_id)
    if story is None:
        raise StoryNotFound(f"Story {story_id} not found")
    bible = repository.get_bible(story_id=story_id)
    if bible is None:
        raise StoryNotReady(f"Story {story_id} has no bible.")

    nodes = repository.list_nodes_missing_images(story_id=story_id, limit=max_nodes)
    filled = 0
    for node in nodes:
        image_url = render_illustration(
            image_generator=services.image_generator,
            storage=services.storage,
            bible=bible,
            panel_description=node.panel_description,
            characters_present=node.characters_present,
            context_chain=node.context_chain,
            style_tag=story.style_tag,
            policy=services.poll_policy,
            object_key=image_object_key(story_id, node.node_id),
        )
        if image_url and repository.set_node_image(node_id=node.node_id, image_url=image_url):
            filled += 1

    cover = _settle_cover(repository, story)
    still_missing = len(repository.list_nodes_missing_images(story_id=story_id, limit=10_000))
    logger.info(
        "backfill.done story_id=%s attempted=%s filled=%s still_missing=%s",
        story_id,
        len(nodes),
        filled,
        still_missing,
    )
    return BackfillResult(
        story_id=story_id,
        attempted=len(nodes),
        filled=filled,
        still_missing=still_missing,
        cover_image_url=cover,
    )
