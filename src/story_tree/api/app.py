"""FastAPI application exposing story creation, batch generation and progress."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from story_tree.api.contracts import (
    BackfillImagesRequest,
    BackfillImagesResponse,
    BatchResultResponse,
    CharacterResponse,
    GenerateBatchRequest,
    NodeCountResponse,
    NodeOutcomeResponse,
    ReclaimStaleRequest,
    StoryBibleSummaryResponse,
    StoryChoiceResponse,
    StoryCreateRequest,
    StoryCreateResponse,
    StoryNodeResponse,
    StoryResponse,
    StoryStatusResponse,
    StoryTreeResponse,
)
from story_tree.application.story_service import StoryTreeService
from story_tree.application.wiring import build_story_service, load_settings
from story_tree.core.generation_queue import BatchResult
from story_tree.domain.errors import (
    ExternalServiceError,
    InvariantViolation,
    LimitExceededError,
    StoryEngineError,
    StoryNotFound,
    StoryNotReady,
    TreeAlreadyBuilt,
    ValidationError,
)
from story_tree.domain.models import Story, StoryBible, StoryChoice, StoryNode

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Simple health payload for liveness checks."""

    status: Literal["ok"] = "ok"
    service: str = "story_tree"


class ApiRootResponse(BaseModel):
    """Describes currently available API capabilities and runtime mode."""

    name: str = "story_tree"
    persistence: Literal["sqlite"] = "sqlite"
    endpoints: list[str] = Field(
        default_factory=lambda: [
            "/healthz",
            "/api/v1",
            "/api/v1/stories",
            "/api/v1/stories/{story_id}",
            "/api/v1/stories/{story_id}/tree",
            "/api/v1/stories/{story_id}/generate",
            "/api/v1/stories/{story_id}/requeue-failed",
            "/api/v1/stories/{story_id}/reclaim-stale",
            "/api/v1/stories/{story_id}/backfill-images",
        ]
    )


def _cors_origins() -> list[str]:
    raw = os.environ.get("STORY_TREE_CORS_ORIGINS", "").strip()
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return ["http://127.0.0.1:5173", "http://localhost:5173"]


def _http_error_for(exc: StoryEngineError) -> HTTPException:
    if isinstance(exc, StoryNotFound):
        return HTTPException(status_code=404, detail="Story not found")
    if isinstance(exc, (StoryNotReady, TreeAlreadyBuilt)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, LimitExceededError):
        return HTTPException(status_code=429, detail=str(exc))
    if isinstance(exc, ExternalServiceError):
        return HTTPException(status_code=502, detail=f"{exc.service} service unavailable")
    if isinstance(exc, (ValidationError, InvariantViolation)):
        return HTTPException(status_code=502, detail="Generator returned unusable output")
    return HTTPException(status_code=500, detail="Story engine error")


def _story_response(story: Story) -> StoryResponse:
    return StoryResponse(
        story_id=story.story_id,
        owner_id=story.owner_id,
        title=story.title,
        cover_image_url=story.cover_image_url,
        premise=story.premise,
        style_tag=story.style_tag,
        audience=story.audience,
        tone=story.tone,
        min_chapters=story.min_chapters,
        max_chapters=story.max_chapters,
        status=story.status,
        progress_percent=story.progress_percent,
        created_at_utc=story.created_at_utc,
        updated_at_utc=story.updated_at_utc,
    )


def _node_response(node: StoryNode) -> StoryNodeResponse:
    return StoryNodeResponse(
        node_id=node.node_id,
        node_key=node.node_key,
        depth=node.depth,
        generation_status=node.generation_status,
        parent_choice_id=node.parent_choice_id,
        title=node.title,
        content=node.content,
        chapter_summary=node.chapter_summary,
        characters_present=list(node.characters_present),
        panel_description=node.panel_description,
        is_ending=node.is_ending,
        ending_type=node.ending_type,
        image_url=node.image_url,
        audio_url=node.audio_url,
        failure_reason=node.failure_reason,
    )


def _choice_response(choice: StoryChoice) -> StoryChoiceResponse:
    return StoryChoiceResponse(
        choice_id=choice.choice_id,
        from_node_id=choice.from_node_id,
        to_node_id=choice.to_node_id,
        choice_text=choice.choice_text,
        consequence_hint=choice.consequence_hint,
        emotional_weight=choice.emotional_weight,
        priority=choice.priority,
        choice_order=choice.choice_order,
    )


def _bible_summary(bible: StoryBible) -> StoryBibleSummaryResponse:
    return StoryBibleSummaryResponse(
        genre=bible.narrative.genre,
        tone=bible.narrative.tone,
        themes=list(bible.narrative.themes),
        world=bible.setting.world,
        art_style=bible.art_style.style,
        characters=[
            CharacterResponse(
                name=character.name,
                role=character.role,
                appearance=character.appearance,
                personality=character.personality,
            )
            for character in bible.characters
        ],
    )


def _batch_response(result: BatchResult) -> BatchResultResponse:
    return BatchResultResponse(
        story_id=result.story_id,
        generated=result.generated,
        remaining_pending=result.remaining_pending,
        story_status=result.story_status,
        progress_percent=result.progress_percent,
        outcomes=[
            NodeOutcomeResponse(
                node_id=outcome.node_id,
                node_key=outcome.node_key,
                status=outcome.status,
                error=outcome.error,
                children_created=outcome.children_created,
                image_degraded=outcome.image_degraded,
                audio_degraded=outcome.audio_degraded,
            )
            for outcome in result.outcomes
        ],
    )


def create_app(db_path: Path | None = None, *, service: StoryTreeService | None = None) -> FastAPI:
    """Create the API application.

    Without an explicit `service`, adapters are built from `STORY_TREE_*`
    environment variables and missing credentials fail at startup.
    """
    if service is None:
        settings = load_settings(db_path=db_path)
        story_service = build_story_service(settings)
        logger.info("api.start db_path=%s text_model=%s", settings.db_path, settings.text_model)
    else:
        story_service = service
        logger.info("api.start service=injected")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("api.stop")

    app = FastAPI(
        title="story_tree API",
        version="0.1.0",
        description=(
            "Branching illustrated story generation: premise to story bible, "
            "root chapter and a lazily generated tree of choices."
        ),
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "system", "description": "Service health and runtime metadata."},
            {"name": "api", "description": "API discovery and root-level capability listing."},
            {"name": "stories", "description": "Story creation, status and tree reads."},
            {"name": "generation", "description": "Queue batches and failed-node recovery."},
        ],
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", response_model=HealthResponse, tags=["system"])
    def healthz() -> HealthResponse:
        return HealthResponse()

    @app.get("/api/v1", response_model=ApiRootResponse, tags=["api"])
    def api_root() -> ApiRootResponse:
        return ApiRootResponse()

    @app.post(
        "/api/v1/stories",
        response_model=StoryCreateResponse,
        tags=["stories"],
        status_code=201,
    )
    def create_story(payload: StoryCreateRequest) -> StoryCreateResponse:
        try:
            created = story_service.create_story(
                owner_id=payload.owner_id,
                premise=payload.premise,
                style_tag=payload.style_tag,
                audience=payload.audience,
                tone=payload.tone,
                min_chapters=payload.min_chapters,
                max_chapters=payload.max_chapters,
            )
            tree = story_service.get_story_tree(story_id=created.story.story_id)
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return StoryCreateResponse(
            story=_story_response(created.story),
            bible=_bible_summary(created.bible),
            root=_node_response(created.root),
            initial_choices=[
                _choice_response(choice)
                for choice in tree.choices
                if choice.from_node_id == created.root.node_id
            ],
        )

    @app.get("/api/v1/stories/{story_id}", response_model=StoryStatusResponse, tags=["stories"])
    def get_story_status(story_id: str) -> StoryStatusResponse:
        try:
            view = story_service.read_story_status(story_id=story_id)
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        return StoryStatusResponse(
            story_id=view.story_id,
            title=view.title,
            status=view.status,
            progress_percent=view.progress_percent,
            nodes_generated=view.nodes_generated,
            nodes_planned=view.nodes_planned,
            nodes_failed=view.nodes_failed,
            nodes_pending=view.nodes_pending,
        )

    @app.get("/api/v1/stories/{story_id}/tree", response_model=StoryTreeResponse, tags=["stories"])
    def get_story_tree(story_id: str) -> StoryTreeResponse:
        try:
            tree = story_service.get_story_tree(story_id=story_id)
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        return StoryTreeResponse(
            story=_story_response(tree.story),
            nodes=[_node_response(node) for node in tree.nodes],
            choices=[_choice_response(choice) for choice in tree.choices],
        )

    @app.post(
        "/api/v1/stories/{story_id}/generate",
        response_model=BatchResultResponse,
        tags=["generation"],
    )
    def generate_batch(
        story_id: str, payload: GenerateBatchRequest | None = None
    ) -> BatchResultResponse:
        max_nodes = payload.max_nodes if payload is not None else None
        try:
            result = story_service.generate_next_batch(story_id=story_id, max_nodes=max_nodes)
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        return _batch_response(result)

    @app.post(
        "/api/v1/stories/{story_id}/requeue-failed",
        response_model=NodeCountResponse,
        tags=["generation"],
    )
    def requeue_failed(story_id: str) -> NodeCountResponse:
        try:
            affected = story_service.requeue_failed_nodes(story_id=story_id)
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        return NodeCountResponse(story_id=story_id, affected=affected)

    @app.post(
        "/api/v1/stories/{story_id}/reclaim-stale",
        response_model=NodeCountResponse,
        tags=["generation"],
    )
    def reclaim_stale(
        story_id: str, payload: ReclaimStaleRequest | None = None
    ) -> NodeCountResponse:
        stale_after = payload.stale_after_seconds if payload is not None else 600
        try:
            affected = story_service.reclaim_stale_nodes(
                story_id=story_id, stale_after_seconds=stale_after
            )
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        return NodeCountResponse(story_id=story_id, affected=affected)

    @app.post(
        "/api/v1/stories/{story_id}/backfill-images",
        response_model=BackfillImagesResponse,
        tags=["generation"],
    )
    def backfill_images(
        story_id: str, payload: BackfillImagesRequest | None = None
    ) -> BackfillImagesResponse:
        max_nodes = payload.max_nodes if payload is not None else None
        try:
            result = story_service.backfill_missing_images(story_id=story_id, max_nodes=max_nodes)
        except StoryEngineError as exc:
            raise _http_error_for(exc) from exc
        return BackfillImagesResponse(
            story_id=result.story_id,
            attempted=result.attempted,
            filled=result.filled,
            still_missing=result.still_missing,
            cover_image_url=result.cover_image_url,
        )

    return app
