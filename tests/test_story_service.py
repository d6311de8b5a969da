from __future__ import annotations

import sqlite3
from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import AllowAllLimiter, FakeImageGenerator, ScriptedTextGenerator, make_services

from story_tree.adapters.sqlite_story_store import SQLiteStoryStore
from story_tree.adapters.sqlite_usage_store import SQLiteUsageStore, UsageWindow
from story_tree.application.story_service import StoryTreeService
from story_tree.domain.errors import BibleInvalid, LimitExceededError, StoryNotFound, StoryNotReady
from story_tree.domain.models import CREATE_STORY_ACTION, GENERATE_BATCH_ACTION
from story_tree.domain.ports import UsageLimiter


def _service(
    store: SQLiteStoryStore,
    *,
    text_generator: ScriptedTextGenerator | None = None,
    limiter: UsageLimiter | None = None,
) -> StoryTreeService:
    return StoryTreeService(
        repository=store,
        services=make_services(text_generator=text_generator),
        usage_limiter=limiter or AllowAllLimiter(),
        default_batch_size=4,
    )


def test_create_story_builds_bible_root_and_choices(store: SQLiteStoryStore) -> None:
    limiter = AllowAllLimiter()
    service = _service(store, limiter=limiter)

    created = service.create_story(owner_id="owner-1", premise="  A forged ledger surfaces.  ")

    assert limiter.calls == [("owner-1", CREATE_STORY_ACTION)]
    assert created.story.status == "generating"
    assert created.story.premise == "A forged ledger surfaces."
    assert created.story.style_tag == "noir"
    assert (created.story.min_chapters, created.story.max_chapters) == (3, 6)
    assert created.root.generation_status == "ready"
    assert created.bible.character_names() == ["Mara Voss", "Ilya Brandt"]
    assert service.get_story_bible(story_id=created.story.story_id) == created.bible


def test_create_story_rejects_bad_input_before_quota(store: SQLiteStoryStore) -> None:
    limiter = AllowAllLimiter()
    service = _service(store, limiter=limiter)
    with pytest.raises(ValueError):
        service.create_story(owner_id="owner-1", premise=" ")
    with pytest.raises(ValueError):
        service.create_story(owner_id="owner-1", premise="p", min_chapters=5, max_chapters=2)
    assert limiter.calls == []


def test_bible_failure_marks_story_failed(tmp_path: Path, store: SQLiteStoryStore) -> None:
    service = _service(store, text_generator=ScriptedTextGenerator(bible_json="not json"))
    with pytest.raises(BibleInvalid):
        service.create_story(owner_id="owner-1", premise="A forged ledger surfaces.")
    with sqlite3.connect(tmp_path / "story_tree.db") as connection:
        statuses = [row[0] for row in connection.execute("SELECT status FROM stories")]
        node_total = connection.execute("SELECT COUNT(*) FROM story_nodes").fetchone()[0]
    assert statuses == ["failed"]
    assert node_total == 0


def test_quota_blocks_before_generation(tmp_path: Path, store: SQLiteStoryStore) -> None:
    generator = ScriptedTextGenerator()
    limiter = SQLiteUsageStore(
        db_path=tmp_path / "usage.db",
        windows={CREATE_STORY_ACTION: UsageWindow(max_events=1, window_seconds=3_600)},
    )
    service = _service(store, text_generator=generator, limiter=limiter)
    service.create_story(owner_id="owner-1", premise="First premise.")
    requests_after_first = len(generator.requests)

    with pytest.raises(LimitExceededError):
        service.create_story(owner_id="owner-1", premise="Second premise.")
    assert len(generator.requests) == requests_after_first


def test_status_reads_live_counts(store: SQLiteStoryStore) -> None:
    service = _service(store)
    created = service.create_story(owner_id="owner-1", premise="A forged ledger surfaces.")
    view = service.read_story_status(story_id=created.story.story_id)
    assert view.status == "generating"
    assert view.title == "Turn"
    assert view.progress_percent == 33
    assert (view.nodes_generated, view.nodes_planned, view.nodes_pending) == (1, 3, 2)


def test_generate_next_batch_uses_default_size_and_quota(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    limiter = AllowAllLimiter()
    service = _service(store, limiter=limiter)
    story_id = seeded_story()

    first = service.generate_next_batch(story_id=story_id)
    assert len(first.outcomes) == 2
    second = service.generate_next_batch(story_id=story_id)
    assert len(second.outcomes) == 4
    assert limiter.calls == [("owner-1", GENERATE_BATCH_ACTION)] * 2


def test_get_story_tree_returns_flat_nodes_and_edges(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    service = _service(store)
    story_id = seeded_story()
    tree = service.get_story_tree(story_id=story_id)
    assert len(tree.nodes) == 3
    assert len(tree.choices) == 2
    assert {choice.to_node_id for choice in tree.choices} == {node.node_id for node in tree.nodes[1:]}


def test_unknown_story_raises_not_found(store: SQLiteStoryStore) -> None:
    service = _service(store)
    with pytest.raises(StoryNotFound):
        service.read_story_status(story_id="missing")
    with pytest.raises(StoryNotFound):
        service.generate_next_batch(story_id="missing")
    with pytest.raises(StoryNotFound):
        service.get_story_tree(story_id="missing")


def test_requeue_requires_generating_story(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    service = _service(store)
    story_id = seeded_story(min_chapters=1, max_chapters=1)
    assert service.requeue_failed_nodes(story_id=story_id) == 0
    for _ in range(5):
        if service.generate_next_batch(story_id=story_id).remaining_pending == 0:
            break
    with pytest.raises(StoryNotReady):
        service.requeue_failed_nodes(story_id=story_id)


def test_reclaim_stale_nodes_validates_window(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    service = _service(store)
    story_id = seeded_story()
    with pytest.raises(ValueError):
        service.reclaim_stale_nodes(story_id=story_id, stale_after_seconds=0)
    assert service.reclaim_stale_nodes(story_id=story_id, stale_after_seconds=600) == 0


def test_backfill_missing_images_charges_batch_quota(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    image_generator = FakeImageGenerator(fail_submit=True)
    limiter = AllowAllLimiter()
    service = StoryTreeService(
        repository=store,
        services=make_services(image_generator=image_generator),
        usage_limiter=limiter,
    )
    story_id = seeded_story(make_services(image_generator=image_generator))

    image_generator.fail_submit = False
    result = service.backfill_missing_images(story_id=story_id)

    assert (result.filled, result.still_missing) == (1, 0)
    assert limiter.calls == [("owner-1", GENERATE_BATCH_ACTION)]
    tree = service.get_story_tree(story_id=story_id)
    assert tree.story.cover_image_url == tree.nodes[0].image_url
    with pytest.raises(StoryNotFound):
        service.backfill_missing_images(story_id="missing")
