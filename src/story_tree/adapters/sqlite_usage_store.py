"""SQLite usage ledger enforcing per-owner sliding-window quotas."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

from story_tree.domain.errors import LimitExceededError
from story_tree.domain.models import CREATE_STORY_ACTION, GENERATE_BATCH_ACTION

logger = logging.getLogger(__name__)

MIN_RETENTION_SECONDS: Final[int] = 24 * 3600


@dataclass(frozen=True)
class UsageWindow:
    """At most `max_events` of one action per owner inside `window_seconds`."""

    max_events: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.max_events <= 0:
            raise ValueError("max_events must be positive.")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive.")


def default_usage_windows(*, daily_story_limit: int, hourly_batch_limit: int) -> dict[str, UsageWindow]:
    return {
        CREATE_STORY_ACTION: UsageWindow(max_events=daily_story_limit, window_seconds=24 * 3600),
        GENERATE_BATCH_ACTION: UsageWindow(max_events=hourly_batch_limit, window_seconds=3600),
    }


class SQLiteUsageStore:
    """Usage events kept as long as the longest window; `enforce` prunes, counts and records."""

    def __init__(self, db_path: Path, *, windows: Mapping[str, UsageWindow]) -> None:
        self._db_path = db_path
        self._windows = dict(windows)
        self._retention_seconds = max(
            [MIN_RETENTION_SECONDS, *(window.window_seconds for window in self._windows.values())]
        )
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path), timeout=30.0)
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_events (
                    event_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_usage_events_owner_action
                ON usage_events(owner_id, action, created_at_utc DESC)
                """
            )
            connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_usage_events_created ON usage_events(created_at_utc)"
            )

    def enforce(self, *, owner_id: str, action: str) -> None:
        """Record one use of `action`, or raise `LimitExceededError` if the window is full.

        Actions without a configured window are recorded but never limited.
        Events older than every window are deleted on the way.
        """
        now = datetime.now(UTC)
        window = self._windows.get(action)
        expired_before = (now - timedelta(seconds=self._retention_seconds)).isoformat()
        with self._connect() as connection:
            connection.execute("BEGIN IMMEDIATE")
            pruned = connection.execute(
                "DELETE FROM usage_events WHERE created_at_utc < ?", (expired_before,)
            ).rowcount
            if pruned:
                logger.info("quota.pruned events=%s", pruned)
            if window is not None:
                cutoff = (now - timedelta(seconds=window.window_seconds)).isoformat()
                row = connection.execute(
                    """
                    SELECT COUNT(*) AS total
                    FROM usage_events
                    WHERE owner_id = ? AND action = ? AND created_at_utc >= ?
                    """,
                    (owner_id, action, cutoff),
                ).fetchone()
                assert row is not None
                used = int(row["total"])
                if used >= window.max_events:
                    logger.warning(
                        "quota.exceeded owner_id=%s action=%s used=%s limit=%s",
                        owner_id,
                        action,
                        used,
                        window.max_events,
                    )
                    raise LimitExceededError(
                        f"{action} limit reached: {window.max_events} per "
                        f"{window.window_seconds} seconds."
                    )
            connection.execute(
                """
                INSERT INTO usage_events (event_id, owner_id, action, created_at_utc)
                VALUES (?, ?, ?, ?)
                """,
                (uuid4().hex, owner_id, action, now.isoformat()),
            )

