"""Environment-driven generation settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

StorageBackend = Literal["local", "supabase"]


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _float_env(name: str, default: float, *, minimum: float, maximum: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _str_env(name: str, default: str = "") -> str:
    return os.environ.get(name, "").strip() or default


@dataclass(frozen=True)
class GenerationSettings:
    """Everything the service factory needs; built once per process."""

    db_path: Path
    text_api_base: str
    text_api_key: str
    text_model: str
    image_api_base: str
    image_api_key: str
    speech_api_key: str
    storage_backend: StorageBackend
    storage_dir: Path
    storage_public_base_url: str
    supabase_url: str
    supabase_service_key: str
    supabase_bucket: str
    min_chapters: int
    max_chapters: int
    batch_size: int
    image_poll_attempts: int
    image_poll_delay_seconds: float
    image_deadline_seconds: float
    daily_story_limit: int
    hourly_batch_limit: int
    stale_claim_seconds: int

    @classmethod
    def from_env(cls) -> GenerationSettings:
        min_chapters = _int_env("STORY_TREE_MIN_CHAPTERS", 3, minimum=1, maximum=20)
        max_chapters = _int_env("STORY_TREE_MAX_CHAPTERS", 6, minimum=1, maximum=30)
        backend = _str_env("STORY_TREE_STORAGE_BACKEND", "local").lower()
        return cls(
            db_path=Path(_str_env("STORY_TREE_DB_PATH", "work/local/story_tree.db")),
            text_api_base=_str_env("STORY_TREE_TEXT_API_BASE", "https://api.openai.com/v1"),
            text_api_key=_str_env("STORY_TREE_TEXT_API_KEY"),
            text_model=_str_env("STORY_TREE_TEXT_MODEL", "gpt-4o-mini"),
            image_api_base=_str_env(
                "STORY_TREE_IMAGE_API_BASE", "https://cloud.leonardo.ai/api/rest/v1"
            ),
            image_api_key=_str_env("STORY_TREE_IMAGE_API_KEY"),
            speech_api_key=_str_env("STORY_TREE_SPEECH_API_KEY"),
            storage_backend="supabase" if backend == "supabase" else "local",
            storage_dir=Path(_str_env("STORY_TREE_STORAGE_DIR", "work/media")),
            storage_public_base_url=_str_env("STORY_TREE_STORAGE_PUBLIC_URL"),
            supabase_url=_str_env("STORY_TREE_SUPABASE_URL"),
            supabase_service_key=_str_env("STORY_TREE_SUPABASE_SERVICE_KEY"),
            supabase_bucket=_str_env("STORY_TREE_SUPABASE_BUCKET", "story-images"),
            min_chapters=min_chapters,
            max_chapters=max(min_chapters, max_chapters),
            batch_size=_int_env("STORY_TREE_BATCH_SIZE", 5, minimum=1, maximum=50),
            image_poll_attempts=_int_env(
                "STORY_TREE_IMAGE_POLL_ATTEMPTS", 30, minimum=1, maximum=300
            ),
            image_poll_delay_seconds=_float_env(
                "STORY_TREE_IMAGE_POLL_DELAY_SECONDS", 2.0, minimum=0.0, maximum=60.0
            ),
            image_deadline_seconds=_float_env(
                "STORY_TREE_IMAGE_DEADLINE_SECONDS", 90.0, minimum=1.0, maximum=1800.0
            ),
            daily_story_limit=_int_env(
                "STORY_TREE_DAILY_STORY_LIMIT", 10, minimum=1, maximum=10_000
            ),
            hourly_batch_limit=_int_env(
                "STORY_TREE_HOURLY_BATCH_LIMIT", 120, minimum=1, maximum=100_000
            ),
            stale_claim_seconds=_int_env(
                "STORY_TREE_STALE_CLAIM_SECONDS", 600, minimum=30, maximum=86_400
            ),
        )
