"""One-shot story bible generation."""

from __future__ import annotations

import logging
import time

from story_tree.core.payload_parsing import parse_story_bible
from story_tree.core.prompts import (
    BIBLE_MAX_TOKENS,
    BIBLE_SYSTEM_PROMPT,
    BIBLE_TEMPERATURE,
    build_bible_user_prompt,
    style_preset,
)
from story_tree.domain.models import StoryBible
from story_tree.domain.ports import TextGenerator, TextRequest

logger = logging.getLogger(__name__)


def generate_story_bible(
    *,
    text_generator: TextGenerator,
    premise: str,
    style_tag: str,
    audience: str,
    tone: str,
    min_chapters: int,
    max_chapters: int,
) -> StoryBible:
    """Request, parse and validate the consistency reference for one story.

    Raises `BibleInvalid` when the output cannot be parsed or lacks an essential
    section, and lets `ExternalServiceError` from the generator propagate.
    """
    if not premise.strip():
        raise ValueError("premise must be non-empty.")
    started = time.perf_counter()
    logger.info("bible.start style_tag=%s audience=%s tone=%s", style_tag, audience, tone)
    raw = text_generator.complete(
        TextRequest(
            system_prompt=BIBLE_SYSTEM_PROMPT,
            user_prompt=build_bible_user_prompt(
                premise=premise.strip(),
                style_tag=style_tag,
                audience=audience,
                tone=tone,
            ),
            temperature=BIBLE_TEMPERATURE,
            max_tokens=BIBLE_MAX_TOKENS,
        )
    )
    bible = parse_story_bible(
        raw,
        fallback_style_prefix=style_preset(style_tag).prompt_prefix(),
        min_chapters=min_chapters,
        max_chapters=max_chapters,
    )
    logger.info(
        "bible.done characters=%s elapsed_seconds=%.3f",
        len(bible.characters),
        time.perf_counter() - started,
    )
    return bible
