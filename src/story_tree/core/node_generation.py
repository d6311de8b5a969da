"""Per-node generation pipeline shared by the tree builder and the queue."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from story_tree.core.chapter_writer import write_chapter
from story_tree.core.context_chain import chapter_digest, extend_context_chain
from story_tree.core.ending_policy import evaluate_ending_policy
from story_tree.core.media import (
    PollPolicy,
    image_object_key,
    render_illustration,
    render_narration,
)
from story_tree.domain.models import (
    ChildSpec,
    GeneratedChapter,
    Story,
    StoryBible,
    StoryNode,
    priority_for_weight,
)
from story_tree.domain.ports import ImageGenerator, ObjectStorage, SpeechSynthesizer, TextGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationServices:
    """External collaborators needed to turn a placeholder into a chapter."""

    text_generator: TextGenerator
    image_generator: ImageGenerator
    speech_synthesizer: SpeechSynthesizer
    storage: ObjectStorage
    poll_policy: PollPolicy = field(default_factory=PollPolicy)


def child_node_key(parent_key: str, choice_order: int) -> str:
    return f"{parent_key}_choice_{choice_order}"


def generate_node_content(
    *,
    services: GenerationServices,
    story: Story,
    bible: StoryBible,
    node: StoryNode,
    choice_text: str | None,
) -> tuple[GeneratedChapter, list[ChildSpec]]:
    """Write one chapter, illustrate and narrate it, and plan its children."""
    decision = evaluate_ending_policy(
        depth=node.depth,
        min_chapters=story.min_chapters,
        max_chapters=story.max_chapters,
    )
    logger.info(
        "node.generate node_key=%s depth=%s directive=%s",
        node.node_key,
        node.depth,
        decision.directive,
    )
    draft = write_chapter(
        text_generator=services.text_generator,
        bible=bible,
        context_chain=node.context_chain,
        selected_choice=choice_text,
        decision=decision,
    )

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="node-media") as executor:
        image_future = executor.submit(
            render_illustration,
            image_generator=services.image_generator,
            storage=services.storage,
            bible=bible,
            panel_description=draft.panel_description,
            characters_present=draft.characters_present,
            context_chain=node.context_chain,
            style_tag=story.style_tag,
            policy=services.poll_policy,
            object_key=image_object_key(story.story_id, node.node_id),
        )
        audio_future = executor.submit(
            render_narration,
            speech_synthesizer=services.speech_synthesizer,
            storage=services.storage,
            text=draft.content,
            style_tag=story.style_tag,
            object_key=f"audio/{story.story_id}/{node.node_id}.mp3",
        )
        image_url = image_future.result()
        audio_url = audio_future.result()

    chapter = GeneratedChapter(draft=draft, image_url=image_url, audio_url=audio_url)
    if draft.is_ending:
        return chapter, []

    digest = chapter_digest(node_key=node.node_key, draft=draft, choice_made=choice_text)
    child_chain = extend_context_chain(node.context_chain, digest)
    children = [
        ChildSpec(
            node_key=child_node_key(node.node_key, order),
            choice=choice,
            choice_order=order,
            priority=priority_for_weight(choice.emotional_weight),
            context_chain=child_chain,
        )
        for order, choice in enumerate(draft.choices)
    ]
    return chapter, children
