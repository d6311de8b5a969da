from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from story_tree.adapters.sqlite_story_store import SQLiteStoryStore, bible_from_json, bible_to_json
from story_tree.domain.errors import StoryEngineError, TreeAlreadyBuilt
from story_tree.domain.models import (
    ChapterDraft,
    ChildSpec,
    ChoiceDraft,
    ContextEntry,
    GeneratedChapter,
    Story,
    StoryBible,
)


def _story(store: SQLiteStoryStore) -> Story:
    return store.create_story(
        owner_id="owner-1",
        premise="A forged ledger surfaces.",
        style_tag="noir",
        audience="adult",
        tone="dark",
        min_chapters=3,
        max_chapters=6,
    )


def _chapter(title: str = "Dock Nine") -> GeneratedChapter:
    return GeneratedChapter(
        draft=ChapterDraft(
            title=title,
            content="Rain on the ledgers.",
            panel_description="Flooded warehouse.",
            chapter_summary="Mara finds the ledger.",
            characters_present=("Mara Voss",),
            is_ending=False,
            ending_type=None,
            choices=(),
        ),
        image_url="https://img.test/1.png",
        audio_url=None,
    )


def _child(key: str, order: int, weight: str = "hope", priority: int = 2) -> ChildSpec:
    return ChildSpec(
        node_key=key,
        choice=ChoiceDraft(text=f"Go {order}", consequence_hint="hint", emotional_weight=weight),
        choice_order=order,
        priority=priority,
        context_chain=(ContextEntry(node_key="start", title="Dock Nine", summary="Mara finds the ledger."),),
    )


def test_create_story_defaults(tmp_path: Path) -> None:
    store = SQLiteStoryStore(db_path=tmp_path / "nested" / "stories.db")
    story = _story(store)
    assert story.status == "pending"
    assert story.progress_percent == 0
    assert story.title == ""
    assert store.get_story(story_id=story.story_id) == story
    assert store.get_story(story_id="missing") is None


def test_transition_story_is_conditional(store: SQLiteStoryStore) -> None:
    story = _story(store)
    assert store.transition_story(story_id=story.story_id, from_status="pending", to_status="generating")
    assert not store.transition_story(
        story_id=story.story_id, from_status="pending", to_status="generating"
    )


def test_mark_story_failed_does_not_override_completion(store: SQLiteStoryStore) -> None:
    story = _story(store)
    store.transition_story(story_id=story.story_id, from_status="pending", to_status="generating")
    store.transition_story(
        story_id=story.story_id, from_status="generating", to_status="fully_generated"
    )
    store.mark_story_failed(story_id=story.story_id)
    reloaded = store.get_story(story_id=story.story_id)
    assert reloaded is not None
    assert reloaded.status == "fully_generated"


def test_bible_roundtrip_and_single_write(store: SQLiteStoryStore, sample_bible: StoryBible) -> None:
    story = _story(store)
    assert store.get_bible(story_id=story.story_id) is None
    store.save_bible(story_id=story.story_id, bible=sample_bible)
    assert store.get_bible(story_id=story.story_id) == sample_bible
    with pytest.raises(StoryEngineError):
        store.save_bible(story_id=story.story_id, bible=sample_bible)


def test_bible_json_is_stable(sample_bible: StoryBible) -> None:
    assert bible_from_json(bible_to_json(sample_bible)) == sample_bible


def test_root_node_is_unique_per_story(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    assert (root.node_key, root.depth, root.order_index) == ("start", 0, 0)
    assert root.generation_status == "pending"
    with pytest.raises(TreeAlreadyBuilt):
        store.create_root_node(story_id=story.story_id)


def test_claim_is_won_exactly_once(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    claim_id = store.claim_node(node_id=root.node_id)
    assert claim_id is not None
    assert store.claim_node(node_id=root.node_id) is None
    claimed = store.get_node(node_id=root.node_id)
    assert claimed is not None
    assert claimed.generation_status == "generating"
    assert claimed.claimed_at_utc is not None


def test_complete_node_writes_chapter_and_children(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    claim_id = store.claim_node(node_id=root.node_id)
    assert claim_id is not None

    completed = store.complete_node(
        node_id=root.node_id,
        claim_id=claim_id,
        chapter=_chapter(),
        children=[_child("start_choice_0", 0), _child("start_choice_1", 1, "fear", 1)],
    )

    assert completed is True
    ready = store.get_node(node_id=root.node_id)
    assert ready is not None
    assert ready.generation_status == "ready"
    assert ready.title == "Dock Nine"
    assert ready.characters_present == ("Mara Voss",)
    assert ready.image_url == "https://img.test/1.png"
    assert ready.audio_url is None

    nodes = store.list_nodes(story_id=story.story_id)
    assert [(node.node_key, node.depth, node.order_index) for node in nodes] == [
        ("start", 0, 0),
        ("start_choice_0", 1, 1),
        ("start_choice_1", 1, 2),
    ]
    assert nodes[1].context_chain[0].summary == "Mara finds the ledger."

    choices = store.list_choices(story_id=story.story_id)
    assert [choice.choice_text for choice in choices] == ["Go 0", "Go 1"]
    assert all(choice.from_node_id == root.node_id for choice in choices)
    assert [choice.to_node_id for choice in choices] == [nodes[1].node_id, nodes[2].node_id]

    pending = store.list_pending_work(story_id=story.story_id, limit=5)
    assert [work.node.node_key for work in pending] == ["start_choice_1", "start_choice_0"]
    assert pending[0].choice_text == "Go 1"


def test_complete_node_requires_active_claim(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    assert (
        store.complete_node(node_id=root.node_id, claim_id="nobody", chapter=_chapter(), children=[])
        is False
    )
    claim_id = store.claim_node(node_id=root.node_id)
    assert claim_id is not None
    store.fail_node(node_id=root.node_id, claim_id=claim_id, reason="boom")
    assert (
        store.complete_node(
            node_id=root.node_id, claim_id=claim_id, chapter=_chapter(), children=[_child("x", 0)]
        )
        is False
    )
    assert store.list_choices(story_id=story.story_id) == []


def test_fail_node_only_from_generating(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    assert store.fail_node(node_id=root.node_id, claim_id="nobody", reason="boom") is False
    claim_id = store.claim_node(node_id=root.node_id)
    assert claim_id is not None
    assert store.fail_node(node_id=root.node_id, claim_id="someone-else", reason="boom") is False
    assert store.fail_node(node_id=root.node_id, claim_id=claim_id, reason="boom") is True
    failed = store.get_node(node_id=root.node_id)
    assert failed is not None
    assert failed.failure_reason == "boom"


def test_requeue_failed_nodes_only_while_generating(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    claim_id = store.claim_node(node_id=root.node_id)
    assert claim_id is not None
    store.fail_node(node_id=root.node_id, claim_id=claim_id, reason="boom")

    assert store.requeue_failed_nodes(story_id=story.story_id) == 0
    store.transition_story(story_id=story.story_id, from_status="pending", to_status="generating")
    assert store.requeue_failed_nodes(story_id=story.story_id) == 1

    requeued = store.get_node(node_id=root.node_id)
    assert requeued is not None
    assert requeued.generation_status == "pending"
    assert requeued.failure_reason is None
    assert requeued.claimed_at_utc is None


def test_fail_stale_claims_only_touches_old_claims(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    store.claim_node(node_id=root.node_id)

    past = (datetime.now(UTC) - timedelta(hours=1)).isoformat()
    assert store.fail_stale_claims(story_id=story.story_id, claimed_before_utc=past) == 0

    future = (datetime.now(UTC) + timedelta(seconds=1)).isoformat()
    assert store.fail_stale_claims(story_id=story.story_id, claimed_before_utc=future) == 1
    expired = store.get_node(node_id=root.node_id)
    assert expired is not None
    assert expired.generation_status == "failed"
    assert expired.failure_reason == "claim expired before completion"


def test_update_story_progress_promotes_only_generating(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    story_id = seeded_story()
    updated = store.update_story_progress(
        story_id=story_id,
        progress_percent=100,
        nodes_generated=3,
        nodes_planned=3,
        nodes_failed=0,
        fully_generated=True,
    )
    assert updated is not None
    assert updated.status == "fully_generated"
    assert updated.progress_percent == 100

    pending_story = _story(store)
    untouched = store.update_story_progress(
        story_id=pending_story.story_id,
        progress_percent=0,
        nodes_generated=0,
        nodes_planned=0,
        nodes_failed=0,
        fully_generated=True,
    )
    assert untouched is not None
    assert untouched.status == "pending"
    assert (
        store.update_story_progress(
            story_id="missing",
            progress_percent=0,
            nodes_generated=0,
            nodes_planned=0,
            nodes_failed=0,
            fully_generated=False,
        )
        is None
    )


def test_count_nodes_groups_by_status(
    store: SQLiteStoryStore, seeded_story: Callable[..., str]
) -> None:
    story_id = seeded_story()
    counts = store.count_nodes(story_id=story_id)
    assert (counts.ready, counts.pending, counts.generating, counts.failed) == (1, 2, 0, 0)
    assert counts.total == 3


def test_swept_claim_cannot_be_completed_by_its_old_worker(store: SQLiteStoryStore) -> None:
    story = _story(store)
    store.transition_story(story_id=story.story_id, from_status="pending", to_status="generating")
    root = store.create_root_node(story_id=story.story_id)
    stale_claim = store.claim_node(node_id=root.node_id)
    assert stale_claim is not None

    future = (datetime.now(UTC) + timedelta(seconds=1)).isoformat()
    assert store.fail_stale_claims(story_id=story.story_id, claimed_before_utc=future) == 1
    assert store.requeue_failed_nodes(story_id=story.story_id) == 1
    current_claim = store.claim_node(node_id=root.node_id)
    assert current_claim is not None
    assert current_claim != stale_claim

    assert (
        store.complete_node(
            node_id=root.node_id, claim_id=stale_claim, chapter=_chapter("Stale"), children=[]
        )
        is False
    )
    assert store.fail_node(node_id=root.node_id, claim_id=stale_claim, reason="late") is False
    assert (
        store.complete_node(
            node_id=root.node_id, claim_id=current_claim, chapter=_chapter("Fresh"), children=[]
        )
        is True
    )
    ready = store.get_node(node_id=root.node_id)
    assert ready is not None
    assert ready.title == "Fresh"
    assert ready.failure_reason is None


def test_missing_images_are_listed_and_filled_once(store: SQLiteStoryStore) -> None:
    story = _story(store)
    root = store.create_root_node(story_id=story.story_id)
    claim_id = store.claim_node(node_id=root.node_id)
    assert claim_id is not None
    degraded = GeneratedChapter(draft=_chapter().draft, image_url=None, audio_url=None)
    store.complete_node(
        node_id=root.node_id, claim_id=claim_id, chapter=degraded, children=[_child("start_choice_0", 0)]
    )

    missing = store.list_nodes_missing_images(story_id=story.story_id, limit=10)
    assert [node.node_key for node in missing] == ["start"]
    assert store.set_node_image(node_id=root.node_id, image_url="memory://images/a.png") is True
    assert store.set_node_image(node_id=root.node_id, image_url="memory://images/b.png") is False
    assert store.list_nodes_missing_images(story_id=story.story_id, limit=10) == []

    child = store.list_nodes(story_id=story.story_id)[1]
    assert store.set_node_image(node_id=child.node_id, image_url="memory://images/c.png") is False
    reloaded = store.get_node(node_id=root.node_id)
    assert reloaded is not None
    assert reloaded.image_url == "memory://images/a.png"


def test_story_cover_is_persisted(store: SQLiteStoryStore) -> None:
    story = _story(store)
    assert story.cover_image_url is None
    store.set_story_cover(story_id=story.story_id, image_url="memory://images/cover.png")
    reloaded = store.get_story(story_id=story.story_id)
    assert reloaded is not None
    assert reloaded.cover_image_url == "memory://images/cover.png"
