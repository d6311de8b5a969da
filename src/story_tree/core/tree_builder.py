"""Root node and initial choices; runs exactly once per story."""

from __future__ import annotations

import logging

from story_tree.core.node_generation import GenerationServices, generate_node_content
from story_tree.core.progress import refresh_story_progress
from story_tree.domain.errors import StoryNotFound, StoryNotReady, TreeAlreadyBuilt
from story_tree.domain.models import StoryNode
from story_tree.domain.ports import StoryRepository

logger = logging.getLogger(__name__)


def build_story_tree(
    *,
    repository: StoryRepository,
    services: GenerationServices,
    story_id: str,
) -> StoryNode:
    """Generate the root chapter and create one pending node per initial choice.

    The story's `pending -> generating` transition is the idempotency guard: a
    second call raises `TreeAlreadyBuilt` without touching any node. A failed
    root generation marks the story `failed` and re-raises.
    """
    story = repository.get_story(story_id=story_id)
    if story is None:
        raise StoryNotFound(f"Story {story_id} not found")
    bible = repository.get_bible(story_id=story_id)
    if bible is None:
        raise StoryNotReady(f"Story {story_id} has no bible; cannot build its tree.")
    if not repository.transition_story(
        story_id=story_id, from_status="pending", to_status="generating"
    ):
        raise TreeAlreadyBuilt(f"Story {story_id} tree was already built.")

    root = repository.create_root_node(story_id=story_id)
    claim_id = repository.claim_node(node_id=root.node_id)
    if claim_id is None:
        raise TreeAlreadyBuilt(f"Story {story_id} root node was claimed elsewhere.")
    logger.info("tree.start story_id=%s root_id=%s", story_id, root.node_id)
    try:
        chapter, children = generate_node_content(
            services=services,
            story=story,
            bible=bible,
            node=root,
            choice_text=None,
        )
    except Exception as exc:
        repository.fail_node(
            node_id=root.node_id, claim_id=claim_id, reason=str(exc) or type(exc).__name__
        )
        repository.mark_story_failed(story_id=story_id)
        logger.error("tree.failed story_id=%s error=%s", story_id, exc)
        raise

    repository.complete_node(
        node_id=root.node_id, claim_id=claim_id, chapter=chapter, children=children
    )
    repository.set_story_title(story_id=story_id, title=chapter.draft.title)
    if chapter.image_url:
        repository.set_story_cover(story_id=story_id, image_url=chapter.image_url)
    refresh_story_progress(repository=repository, story_id=story_id)
    logger.info("tree.done story_id=%s initial_choices=%s", story_id, len(children))
    built = repository.get_node(node_id=root.node_id)
    assert built is not None
    return built
