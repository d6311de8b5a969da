"""Wire concrete adapters from `GenerationSettings`."""

from __future__ import annotations

import logging

from story_tree.adapters.http_text_client import HttpChatCompletionsClient
from story_tree.adapters.leonardo_image_client import LeonardoImageClient
from story_tree.adapters.object_storage import LocalObjectStorage, SupabaseObjectStorage
from story_tree.adapters.openai_speech_client import OpenAISpeechClient
from story_tree.adapters.runtime_config import GenerationSettings
from story_tree.adapters.sqlite_story_store import SQLiteStoryStore
from story_tree.adapters.sqlite_usage_store import SQLiteUsageStore, default_usage_windows
from story_tree.core.media import PollPolicy
from story_tree.core.node_generation import GenerationServices
from story_tree.domain.ports import ObjectStorage

logger = logging.getLogger(__name__)


def _require(value: str, env_name: str) -> str:
    if not value:
        raise ValueError(f"{env_name} must be set.")
    return value


def build_object_storage(settings: GenerationSettings) -> ObjectStorage:
    if settings.storage_backend == "supabase":
        return SupabaseObjectStorage(
            project_url=_require(settings.supabase_url, "STORY_TREE_SUPABASE_URL"),
            service_key=_require(
                settings.supabase_service_key, "STORY_TREE_SUPABASE_SERVICE_KEY"
            ),
            bucket=settings.supabase_bucket,
        )
    return LocalObjectStorage(
        root_dir=settings.storage_dir,
        public_base_url=settings.storage_public_base_url,
    )


def build_generation_services(settings: GenerationSettings) -> GenerationServices:
    """Build every external collaborator; missing credentials fail fast."""
    services = GenerationServices(
        text_generator=HttpChatCompletionsClient(
            api_base_url=settings.text_api_base,
            api_key=_require(settings.text_api_key, "STORY_TREE_TEXT_API_KEY"),
            model=settings.text_model,
        ),
        image_generator=LeonardoImageClient(
            api_key=_require(settings.image_api_key, "STORY_TREE_IMAGE_API_KEY"),
            api_base_url=settings.image_api_base,
        ),
        speech_synthesizer=OpenAISpeechClient(
            api_key=_require(settings.speech_api_key, "STORY_TREE_SPEECH_API_KEY"),
        ),
        storage=build_object_storage(settings),
        poll_policy=PollPolicy(
            max_attempts=settings.image_poll_attempts,
            delay_seconds=settings.image_poll_delay_seconds,
            deadline_seconds=settings.image_deadline_seconds,
        ),
    )
    logger.info(
        "services.ready text_model=%s storage_backend=%s",
        settings.text_model,
        settings.storage_backend,
    )
    return services


def build_story_store(settings: GenerationSettings) -> SQLiteStoryStore:
    return SQLiteStoryStore(db_path=settings.db_path)


def build_usage_store(settings: GenerationSettings) -> SQLiteUsageStore:
    return SQLiteUsageStore(
        db_path=settings.db_path,
        windows=default_usage_windows(
            daily_story_limit=settings.daily_story_limit,
            hourly_batch_limit=settings.hourly_batch_limit,
        ),
    )
