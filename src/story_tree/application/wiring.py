"""Composition root: settings to a ready `StoryTreeService`."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from story_tree.adapters.runtime_config import GenerationSettings
from story_tree.adapters.service_factory import (
    build_generation_services,
    build_story_store,
    build_usage_store,
)
from story_tree.application.story_service import StoryTreeService


def load_settings(*, db_path: Path | None = None) -> GenerationSettings:
    settings = GenerationSettings.from_env()
    if db_path is not None:
        settings = replace(settings, db_path=db_path)
    return settings


def build_story_service(settings: GenerationSettings) -> StoryTreeService:
    return StoryTreeService(
        repository=build_story_store(settings),
        services=build_generation_services(settings),
        usage_limiter=build_usage_store(settings),
        default_min_chapters=settings.min_chapters,
        default_max_chapters=settings.max_chapters,
        default_batch_size=settings.batch_size,
    )
