"""Chapter content requests and choice-cardinality validation."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from story_tree.core.ending_policy import EndingDecision, apply_ending_backstop
from story_tree.core.payload_parsing import parse_chapter_draft
from story_tree.core.prompts import (
    CHAPTER_MAX_TOKENS,
    CHAPTER_SYSTEM_PROMPT,
    CHAPTER_TEMPERATURE,
    build_chapter_user_prompt,
)
from story_tree.domain.errors import InvariantViolation
from story_tree.domain.models import MAX_CHOICES, ChapterDraft, ContextEntry, StoryBible
from story_tree.domain.ports import TextGenerator, TextRequest

logger = logging.getLogger(__name__)


def write_chapter(
    *,
    text_generator: TextGenerator,
    bible: StoryBible,
    context_chain: Sequence[ContextEntry],
    selected_choice: str | None,
    decision: EndingDecision,
) -> ChapterDraft:
    """Request one chapter and return it validated against the ending decision."""
    raw = text_generator.complete(
        TextRequest(
            system_prompt=CHAPTER_SYSTEM_PROMPT,
            user_prompt=build_chapter_user_prompt(
                bible=bible,
                context_chain=context_chain,
                selected_choice=selected_choice,
                decision=decision,
            ),
            temperature=CHAPTER_TEMPERATURE,
            max_tokens=CHAPTER_MAX_TOKENS,
        )
    )
    draft = parse_chapter_draft(raw, bible=bible)
    return validate_chapter(draft, decision)


def validate_chapter(draft: ChapterDraft, decision: EndingDecision) -> ChapterDraft:
    """Apply the max-depth backstop, then enforce choice cardinality."""
    if decision.must_end:
        if not draft.is_ending:
            logger.warning(
                "chapter.backstop depth=%s discarded_choices=%s",
                decision.depth,
                len(draft.choices),
            )
        return apply_ending_backstop(draft, decision)

    if draft.is_ending:
        if not decision.may_end:
            raise InvariantViolation(
                f"Chapter at depth {decision.depth} ended before min_chapters="
                f"{decision.min_chapters}."
            )
        if draft.choices:
            raise InvariantViolation(
                f"Ending chapter returned {len(draft.choices)} choices; endings must have none."
            )
        return draft

    if len(draft.choices) < decision.min_choices:
        raise InvariantViolation(
            f"Non-ending chapter at depth {decision.depth} returned {len(draft.choices)} "
            f"choices; at least {decision.min_choices} required."
        )
    if len(draft.choices) > MAX_CHOICES:
        logger.warning(
            "chapter.choices_truncated depth=%s returned=%s kept=%s",
            decision.depth,
            len(draft.choices),
            MAX_CHOICES,
        )
        return replace(draft, choices=draft.choices[:MAX_CHOICES])
    return draft
