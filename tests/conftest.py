from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import BIBLE_JSON, make_services

from story_tree.adapters.sqlite_story_store import SQLiteStoryStore
from story_tree.core.node_generation import GenerationServices
from story_tree.core.payload_parsing import parse_story_bible
from story_tree.core.tree_builder import build_story_tree
from story_tree.domain.models import StoryBible


@pytest.fixture
def sample_bible() -> StoryBible:
    return parse_story_bible(
        BIBLE_JSON,
        fallback_style_prefix="unused",
        min_chapters=3,
        max_chapters=6,
    )


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStoryStore:
    return SQLiteStoryStore(db_path=tmp_path / "story_tree.db")


@pytest.fixture
def seeded_story(
    store: SQLiteStoryStore, sample_bible: StoryBible
) -> Callable[..., str]:
    """Create a story with a bible and a built root; return its id."""

    def _seed(
        services: GenerationServices | None = None,
        *,
        min_chapters: int = 3,
        max_chapters: int = 6,
        owner_id: str = "owner-1",
    ) -> str:
        story = store.create_story(
            owner_id=owner_id,
            premise="A forged ledger surfaces in a drowned port.",
            style_tag="noir",
            audience="adult",
            tone="dark",
            min_chapters=min_chapters,
            max_chapters=max_chapters,
        )
        store.save_bible(story_id=story.story_id, bible=sample_bible)
        build_story_tree(
            repository=store,
            services=services or make_services(),
            story_id=story.story_id,
        )
        return story.story_id

    return _seed
