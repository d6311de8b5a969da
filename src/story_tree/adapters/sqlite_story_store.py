"""SQLite-backed persistence for stories, bibles, tree nodes and choice edges."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from story_tree.core.context_chain import context_chain_from_payload, context_chain_to_payload
from story_tree.domain.errors import StoryEngineError, TreeAlreadyBuilt
from story_tree.domain.models import (
    DEFAULT_CHOICE_PRIORITY,
    ROOT_NODE_KEY,
    ArtStyle,
    ChildSpec,
    GeneratedChapter,
    NarrativeOutline,
    NodeCounts,
    PendingWork,
    PossibleEnding,
    Story,
    StoryBible,
    StoryCharacter,
    StoryChoice,
    StoryLocation,
    StoryNode,
    StorySetting,
    StoryStatus,
)

_NODE_COLUMNS = """
    n.node_id, n.story_id, n.node_key, n.depth, n.order_index, n.generation_status,
    n.context_chain_json, n.parent_choice_id, n.title, n.content, n.chapter_summary,
    n.characters_present_json, n.panel_description, n.is_ending, n.ending_type,
    n.image_url, n.audio_url, n.failure_reason, n.claimed_at_utc
"""

_STORY_COLUMNS = """
    story_id, owner_id, premise, style_tag, audience, tone, min_chapters, max_chapters,
    status, title, cover_image_url, progress_percent, nodes_generated, nodes_planned,
    nodes_failed, created_at_utc, updated_at_utc
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def bible_to_json(bible: StoryBible) -> str:
    return json.dumps(asdict(bible), ensure_ascii=True, sort_keys=True)


def bible_from_json(raw: str) -> StoryBible:
    payload: dict[str, Any] = json.loads(raw)
    setting = payload["setting"]
    art_style = payload["art_style"]
    narrative = payload["narrative"]
    return StoryBible(
        characters=tuple(StoryCharacter(**item) for item in payload["characters"]),
        setting=StorySetting(
            world=setting["world"],
            time_period=setting["time_period"],
            atmosphere=setting["atmosphere"],
            locations=tuple(StoryLocation(**item) for item in setting.get("locations", [])),
        ),
        art_style=ArtStyle(
            style=art_style["style"],
            color_palette=art_style["color_palette"],
            line_work=art_style["line_work"],
            lighting=art_style["lighting"],
            mood=art_style["mood"],
            influences=tuple(art_style.get("influences", [])),
        ),
        narrative=NarrativeOutline(
            genre=narrative["genre"],
            tone=narrative["tone"],
            plot_outline=narrative["plot_outline"],
            themes=tuple(narrative.get("themes", [])),
            min_chapters=int(narrative["min_chapters"]),
            max_chapters=int(narrative["max_chapters"]),
            possible_endings=tuple(
                PossibleEnding(**item) for item in narrative.get("possible_endings", [])
            ),
        ),
        style_prompt_prefix=payload["style_prompt_prefix"],
        character_prompt_map=dict(payload.get("character_prompt_map", {})),
    )


class SQLiteStoryStore:
    """Persist one flat node/edge table per story tree in a single SQLite database.

    Every status change is a conditional UPDATE; the caller learns whether it
    won from the returned boolean, which keeps node status monotonic when
    several workers process the same story.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path), timeout=30.0)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS stories (
                    story_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    premise TEXT NOT NULL,
                    style_tag TEXT NOT NULL,
                    audience TEXT NOT NULL,
                    tone TEXT NOT NULL,
                    min_chapters INTEGER NOT NULL,
                    max_chapters INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    cover_image_url TEXT,
                    progress_percent INTEGER NOT NULL DEFAULT 0,
                    nodes_generated INTEGER NOT NULL DEFAULT 0,
                    nodes_planned INTEGER NOT NULL DEFAULT 0,
                    nodes_failed INTEGER NOT NULL DEFAULT 0,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS story_bibles (
                    story_id TEXT PRIMARY KEY,
                    bible_json TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (story_id) REFERENCES stories(story_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS story_nodes (
                    node_id TEXT PRIMARY KEY,
                    story_id TEXT NOT NULL,
                    node_key TEXT NOT NULL,
                    depth INTEGER NOT NULL,
                    order_index INTEGER NOT NULL,
                    generation_status TEXT NOT NULL,
                    context_chain_json TEXT NOT NULL DEFAULT '[]',
                    parent_choice_id TEXT,
                    title TEXT NOT NULL DEFAULT '',
                    content TEXT NOT NULL DEFAULT '',
                    chapter_summary TEXT NOT NULL DEFAULT '',
                    characters_present_json TEXT NOT NULL DEFAULT '[]',
                    panel_description TEXT NOT NULL DEFAULT '',
                    is_ending INTEGER NOT NULL DEFAULT 0,
                    ending_type TEXT,
                    image_url TEXT,
                    audio_url TEXT,
                    failure_reason TEXT,
                    claimed_at_utc TEXT,
                    claim_id TEXT,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL,
                    UNIQUE (story_id, node_key),
                    UNIQUE (story_id, order_index),
                    FOREIGN KEY (story_id) REFERENCES stories(story_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS story_choices (
                    choice_id TEXT PRIMARY KEY,
                    story_id TEXT NOT NULL,
                    from_node_id TEXT NOT NULL,
                    to_node_id TEXT NOT NULL UNIQUE,
                    choice_text TEXT NOT NULL,
                    consequence_hint TEXT NOT NULL DEFAULT '',
                    emotional_weight TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    choice_order INTEGER NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (from_node_id) REFERENCES story_nodes(node_id),
                    FOREIGN KEY (to_node_id) REFERENCES story_nodes(node_id)
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_story_nodes_status
                ON story_nodes(story_id, generation_status, order_index)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_story_choices_from
                ON story_choices(from_node_id, choice_order)
                """
            )

    def create_story(
        self,
        *,
        owner_id: str,
        premise: str,
        style_tag: str,
        audience: str,
        tone: str,
        min_chapters: int,
        max_chapters: int,
    ) -> Story:
        """Create one story record in `pending` status."""
        now = _now()
        story_id = uuid4().hex
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO stories (
                    story_id, owner_id, premise, style_tag, audience, tone,
                    min_chapters, max_chapters, status, created_at_utc, updated_at_utc
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (
                    story_id,
                    owner_id,
                    premise,
                    style_tag,
                    audience,
                    tone,
                    min_chapters,
                    max_chapters,
                    now,
                    now,
                ),
            )
        story = self.get_story(story_id=story_id)
        if story is None:
            raise RuntimeError("Created story could not be loaded.")
        return story

    def get_story(self, *, story_id: str) -> Story | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_STORY_COLUMNS} FROM stories WHERE story_id = ?",
                (story_id,),
            ).fetchone()
        if row is None:
            return None
        return self._story_from_row(row)

    def transition_story(
        self, *, story_id: str, from_status: StoryStatus, to_status: StoryStatus
    ) -> bool:
        """Move a story between statuses only if it is still in `from_status`."""
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE stories
                SET status = ?, updated_at_utc = ?
                WHERE story_id = ? AND status = ?
                """,
                (to_status, _now(), story_id, from_status),
            )
            return cursor.rowcount == 1

    def mark_story_failed(self, *, story_id: str) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                UPDATE stories
                SET status = 'failed', updated_at_utc = ?
                WHERE story_id = ? AND status IN ('pending', 'generating')
                """,
                (_now(), story_id),
            )

    def set_story_title(self, *, story_id: str, title: str) -> None:
        with self._connect() as connection:
            connection.execute(
                "UPDATE stories SET title = ?, updated_at_utc = ? WHERE story_id = ?",
                (title, _now(), story_id),
            )

    def set_story_cover(self, *, story_id: str, image_url: str) -> None:
        with self._connect() as connection:
            connection.execute(
                "UPDATE stories SET cover_image_url = ?, updated_at_utc = ? WHERE story_id = ?",
                (image_url, _now(), story_id),
            )

    def update_story_progress(
        self,
        *,
        story_id: str,
        progress_percent: int,
        nodes_generated: int,
        nodes_planned: int,
        nodes_failed: int,
        fully_generated: bool,
    ) -> Story | None:
        """Write recomputed aggregates; promote `generating` to `fully_generated` when done."""
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE stories
                SET progress_percent = ?,
                    nodes_generated = ?,
                    nodes_planned = ?,
                    nodes_failed = ?,
                    status = CASE
                        WHEN ? = 1 AND status = 'generating' THEN 'fully_generated'
                        ELSE status
                    END,
                    updated_at_utc = ?
                WHERE story_id = ?
                """,
                (
                    progress_percent,
                    nodes_generated,
                    nodes_planned,
                    nodes_failed,
                    1 if fully_generated else 0,
                    _now(),
                    story_id,
                ),
            )
            updated_rows = cursor.rowcount
        if updated_rows == 0:
            return None
        return self.get_story(story_id=story_id)

    def save_bible(self, *, story_id: str, bible: StoryBible) -> None:
        """Store the bible once; a second write for the same story is rejected."""
        try:
            with self._connect() as connection:
                connection.execute(
                    """
                    INSERT INTO story_bibles (story_id, bible_json, created_at_utc)
                    VALUES (?, ?, ?)
                    """,
                    (story_id, bible_to_json(bible), _now()),
                )
        except sqlite3.IntegrityError as exc:
            raise StoryEngineError(f"Story {story_id} already has a bible.") from exc

    def get_bible(self, *, story_id: str) -> StoryBible | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT bible_json FROM story_bibles WHERE story_id = ?",
                (story_id,),
            ).fetchone()
        if row is None:
            return None
        return bible_from_json(str(row["bible_json"]))

    def create_root_node(self, *, story_id: str) -> StoryNode:
        now = _now()
        node_id = uuid4().hex
        try:
            with self._connect() as connection:
                connection.execute(
                    """
                    INSERT INTO story_nodes (
                        node_id, story_id, node_key, depth, order_index, generation_status,
                        created_at_utc, updated_at_utc
                    )
                    VALUES (?, ?, ?, 0, 0, 'pending', ?, ?)
                    """,
                    (node_id, story_id, ROOT_NODE_KEY, now, now),
                )
        except sqlite3.IntegrityError as exc:
            raise TreeAlreadyBuilt(f"Story {story_id} already has a root node.") from exc
        node = self.get_node(node_id=node_id)
        if node is None:
            raise RuntimeError("Created root node could not be loaded.")
        return node

    def get_node(self, *, node_id: str) -> StoryNode | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_NODE_COLUMNS} FROM story_nodes n WHERE n.node_id = ?",
                (node_id,),
            ).fetchone()
        if row is None:
            return None
        return self._node_from_row(row)

    def list_pending_work(self, *, story_id: str, limit: int) -> list[PendingWork]:
        """Pending nodes ordered by incoming choice priority, then creation order."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_NODE_COLUMNS},
                       c.choice_text AS incoming_choice_text,
                       COALESCE(c.priority, ?) AS incoming_priority
                FROM story_nodes n
                LEFT JOIN story_choices c ON c.to_node_id = n.node_id
                WHERE n.story_id = ? AND n.generation_status = 'pending'
                ORDER BY incoming_priority ASC, n.order_index ASC
                LIMIT ?
                """,
                (DEFAULT_CHOICE_PRIORITY, story_id, limit),
            ).fetchall()
        return [
            PendingWork(
                node=self._node_from_row(row),
                choice_text=(
                    str(row["incoming_choice_text"])
                    if row["incoming_choice_text"] is not None
                    else None
                ),
                priority=int(row["incoming_priority"]),
            )
            for row in rows
        ]

    def claim_node(self, *, node_id: str) -> str | None:
        """Move a pending node to `generating`; return the new claim id, or None if taken.

        Completion and failure must present the same claim id, so a worker whose
        claim was swept and handed to someone else cannot write the node.
        """
        now = _now()
        claim_id = uuid4().hex
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE story_nodes
                SET generation_status = 'generating',
                    claim_id = ?,
                    claimed_at_utc = ?,
                    updated_at_utc = ?
                WHERE node_id = ? AND generation_status = 'pending'
                """,
                (claim_id, now, now, node_id),
            )
            return claim_id if cursor.rowcount == 1 else None

    def complete_node(
        self,
        *,
        node_id: str,
        claim_id: str,
        chapter: GeneratedChapter,
        children: list[ChildSpec],
    ) -> bool:
        """Mark a claimed node ready and create its placeholder children in one transaction."""
        now = _now()
        draft = chapter.draft
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE story_nodes
                SET generation_status = 'ready',
                    title = ?,
                    content = ?,
                    chapter_summary = ?,
                    characters_present_json = ?,
                    panel_description = ?,
                    is_ending = ?,
                    ending_type = ?,
                    image_url = ?,
                    audio_url = ?,
                    failure_reason = NULL,
                    updated_at_utc = ?
                WHERE node_id = ? AND claim_id = ? AND generation_status = 'generating'
                """,
                (
                    draft.title,
                    draft.content,
                    draft.chapter_summary,
                    json.dumps(list(draft.characters_present)),
                    draft.panel_description,
                    1 if draft.is_ending else 0,
                    draft.ending_type,
                    chapter.image_url,
                    chapter.audio_url,
                    now,
                    node_id,
                    claim_id,
                ),
            )
            if cursor.rowcount != 1:
                return False
            parent = connection.execute(
                "SELECT story_id, depth FROM story_nodes WHERE node_id = ?",
                (node_id,),
            ).fetchone()
            story_id = str(parent["story_id"])
            child_depth = int(parent["depth"]) + 1
            next_order = int(
                connection.execute(
                    "SELECT COALESCE(MAX(order_index), -1) + 1 FROM story_nodes WHERE story_id = ?",
                    (story_id,),
                ).fetchone()[0]
            )
            for offset, child in enumerate(children):
                child_id = uuid4().hex
                choice_id = uuid4().hex
                connection.execute(
                    """
                    INSERT INTO story_nodes (
                        node_id, story_id, node_key, depth, order_index, generation_status,
                        context_chain_json, parent_choice_id, created_at_utc, updated_at_utc
                    )
                    VALUES (?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?)
                    """,
                    (
                        child_id,
                        story_id,
                        child.node_key,
                        child_depth,
                        next_order + offset,
                        json.dumps(context_chain_to_payload(child.context_chain)),
                        choice_id,
                        now,
                        now,
                    ),
                )
                connection.execute(
                    """
                    INSERT INTO story_choices (
                        choice_id, story_id, from_node_id, to_node_id, choice_text,
                        consequence_hint, emotional_weight, priority, choice_order, created_at_utc
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        choice_id,
                        story_id,
                        node_id,
                        child_id,
                        child.choice.text,
                        child.choice.consequence_hint,
                        child.choice.emotional_weight,
                        child.priority,
                        child.choice_order,
                        now,
                    ),
                )
        return True

    def fail_node(self, *, node_id: str, claim_id: str, reason: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE story_nodes
                SET generation_status = 'failed', failure_reason = ?, updated_at_utc = ?
                WHERE node_id = ? AND claim_id = ? AND generation_status = 'generating'
                """,
                (reason, _now(), node_id, claim_id),
            )
            return cursor.rowcount == 1

    def list_nodes_missing_images(self, *, story_id: str, limit: int) -> list[StoryNode]:
        """Ready nodes whose illustration degraded, shallowest first."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_NODE_COLUMNS}
                FROM story_nodes n
                WHERE n.story_id = ? AND n.generation_status = 'ready' AND n.image_url IS NULL
                ORDER BY n.depth ASC, n.order_index ASC
                LIMIT ?
                """,
                (story_id, limit),
            ).fetchall()
        return [self._node_from_row(row) for row in rows]

    def set_node_image(self, *, node_id: str, image_url: str) -> bool:
        """Fill a ready node's missing image; never overwrites an existing one."""
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE story_nodes
                SET image_url = ?, updated_at_utc = ?
                WHERE node_id = ? AND generation_status = 'ready' AND image_url IS NULL
                """,
                (image_url, _now(), node_id),
            )
            return cursor.rowcount == 1

    def count_nodes(self, *, story_id: str) -> NodeCounts:
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT generation_status, COUNT(*) AS total
                FROM story_nodes
                WHERE story_id = ?
                GROUP BY generation_status
                """,
                (story_id,),
            ).fetchall()
        totals = {str(row["generation_status"]): int(row["total"]) for row in rows}
        return NodeCounts(
            pending=totals.get("pending", 0),
            generating=totals.get("generating", 0),
            ready=totals.get("ready", 0),
            failed=totals.get("failed", 0),
        )

    def list_nodes(self, *, story_id: str) -> list[StoryNode]:
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_NODE_COLUMNS}
                FROM story_nodes n
                WHERE n.story_id = ?
                ORDER BY n.depth ASC, n.order_index ASC
                """,
                (story_id,),
            ).fetchall()
        return [self._node_from_row(row) for row in rows]

    def list_choices(self, *, story_id: str) -> list[StoryChoice]:
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT c.choice_id, c.from_node_id, c.to_node_id, c.choice_text,
                       c.consequence_hint, c.emotional_weight, c.priority, c.choice_order
                FROM story_choices c
                JOIN story_nodes n ON n.node_id = c.from_node_id
                WHERE c.story_id = ?
                ORDER BY n.order_index ASC, c.choice_order ASC
                """,
                (story_id,),
            ).fetchall()
        return [self._choice_from_row(row) for row in rows]

    def requeue_failed_nodes(self, *, story_id: str) -> int:
        """Return failed nodes to `pending`; only while the story is still generating."""
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE story_nodes
                SET generation_status = 'pending',
                    failure_reason = NULL,
                    claim_id = NULL,
                    claimed_at_utc = NULL,
                    updated_at_utc = ?
                WHERE story_id = ?
                  AND generation_status = 'failed'
                  AND EXISTS (
                      SELECT 1 FROM stories s
                      WHERE s.story_id = ? AND s.status = 'generating'
                  )
                """,
                (_now(), story_id, story_id),
            )
            return cursor.rowcount

    def fail_stale_claims(self, *, story_id: str, claimed_before_utc: str) -> int:
        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE story_nodes
                SET generation_status = 'failed',
                    failure_reason = 'claim expired before completion',
                    claim_id = NULL,
                    updated_at_utc = ?
                WHERE story_id = ?
                  AND generation_status = 'generating'
                  AND claimed_at_utc IS NOT NULL
                  AND claimed_at_utc < ?
                """,
                (_now(), story_id, claimed_before_utc),
            )
            return cursor.rowcount

    @staticmethod
    def _story_from_row(row: sqlite3.Row) -> Story:
        return Story(
            story_id=str(row["story_id"]),
            owner_id=str(row["owner_id"]),
            premise=str(row["premise"]),
            style_tag=str(row["style_tag"]),
            audience=str(row["audience"]),
            tone=str(row["tone"]),
            min_chapters=int(row["min_chapters"]),
            max_chapters=int(row["max_chapters"]),
            status=row["status"],
            title=str(row["title"]),
            cover_image_url=row["cover_image_url"],
            progress_percent=int(row["progress_percent"]),
            nodes_generated=int(row["nodes_generated"]),
            nodes_planned=int(row["nodes_planned"]),
            nodes_failed=int(row["nodes_failed"]),
            created_at_utc=str(row["created_at_utc"]),
            updated_at_utc=str(row["updated_at_utc"]),
        )

    @staticmethod
    def _node_from_row(row: sqlite3.Row) -> StoryNode:
        return StoryNode(
            node_id=str(row["node_id"]),
            story_id=str(row["story_id"]),
            node_key=str(row["node_key"]),
            depth=int(row["depth"]),
            order_index=int(row["order_index"]),
            generation_status=row["generation_status"],
            context_chain=context_chain_from_payload(json.loads(row["context_chain_json"])),
            parent_choice_id=row["parent_choice_id"],
            title=str(row["title"]),
            content=str(row["content"]),
            chapter_summary=str(row["chapter_summary"]),
            characters_present=tuple(json.loads(row["characters_present_json"])),
            panel_description=str(row["panel_description"]),
            is_ending=bool(row["is_ending"]),
            ending_type=row["ending_type"],
            image_url=row["image_url"],
            audio_url=row["audio_url"],
            failure_reason=row["failure_reason"],
            claimed_at_utc=row["claimed_at_utc"],
        )

    @staticmethod
    def _choice_from_row(row: sqlite3.Row) -> StoryChoice:
        return StoryChoice(
            choice_id=str(row["choice_id"]),
            from_node_id=str(row["from_node_id"]),
            to_node_id=str(row["to_node_id"]),
            choice_text=str(row["choice_text"]),
            consequence_hint=str(row["consequence_hint"]),
            emotional_weight=str(row["emotional_weight"]),
            priority=int(row["priority"]),
            choice_order=int(row["choice_order"]),
        )
