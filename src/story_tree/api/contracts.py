"""Typed contracts shared by API handlers and Python interfaces."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from story_tree.core.prompts import AUDIENCE_LABELS, DEFAULT_STYLE_TAG, STYLE_PRESETS

OWNER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@-]{0,127}$")

StoryStatusLiteral = Literal["pending", "generating", "fully_generated", "failed"]
NodeStatusLiteral = Literal["pending", "generating", "ready", "failed"]


class ContractModel(BaseModel):
    """Base model config used by all API contracts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class StoryCreateRequest(ContractModel):
    """Premise plus style parameters for a new branching story."""

    owner_id: str = Field(min_length=1, max_length=128)
    premise: str = Field(min_length=1, max_length=4000)
    style_tag: str = Field(default=DEFAULT_STYLE_TAG, min_length=1, max_length=40)
    audience: str = Field(default="adult", min_length=1, max_length=40)
    tone: str = Field(default="dramatic", min_length=1, max_length=200)
    min_chapters: int | None = Field(default=None, ge=1, le=20)
    max_chapters: int | None = Field(default=None, ge=1, le=30)

    @field_validator("owner_id")
    @classmethod
    def _validate_owner(cls, value: str) -> str:
        if not OWNER_PATTERN.match(value):
            raise ValueError(f"owner_id must match `{OWNER_PATTERN.pattern}`.")
        return value

    @field_validator("style_tag")
    @classmethod
    def _validate_style_tag(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in STYLE_PRESETS:
            raise ValueError(f"style_tag must be one of: {', '.join(sorted(STYLE_PRESETS))}.")
        return normalized

    @field_validator("audience")
    @classmethod
    def _validate_audience(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in AUDIENCE_LABELS:
            raise ValueError(f"audience must be one of: {', '.join(sorted(AUDIENCE_LABELS))}.")
        return normalized

    @model_validator(mode="after")
    def _validate_chapter_bounds(self) -> StoryCreateRequest:
        if (
            self.min_chapters is not None
            and self.max_chapters is not None
            and self.max_chapters < self.min_chapters
        ):
            raise ValueError("max_chapters must be >= min_chapters.")
        return self


class GenerateBatchRequest(ContractModel):
    max_nodes: int | None = Field(default=None, ge=1, le=50)


class ReclaimStaleRequest(ContractModel):
    stale_after_seconds: int = Field(default=600, ge=30, le=86_400)


class BackfillImagesRequest(ContractModel):
    max_nodes: int | None = Field(default=None, ge=1, le=50)


class StoryResponse(ContractModel):
    story_id: str
    owner_id: str
    title: str
    cover_image_url: str | None = None
    premise: str
    style_tag: str
    audience: str
    tone: str
    min_chapters: int
    max_chapters: int
    status: StoryStatusLiteral
    progress_percent: int
    created_at_utc: str
    updated_at_utc: str


class StoryStatusResponse(ContractModel):
    """Progress view polled by readers while the tree grows."""

    story_id: str
    title: str
    status: StoryStatusLiteral
    progress_percent: int = Field(ge=0, le=100)
    nodes_generated: int
    nodes_planned: int
    nodes_failed: int
    nodes_pending: int


class StoryChoiceResponse(ContractModel):
    choice_id: str
    from_node_id: str
    to_node_id: str
    choice_text: str
    consequence_hint: str
    emotional_weight: str
    priority: int
    choice_order: int


class StoryNodeResponse(ContractModel):
    node_id: str
    node_key: str
    depth: int
    generation_status: NodeStatusLiteral
    parent_choice_id: str | None
    title: str
    content: str
    chapter_summary: str
    characters_present: list[str]
    panel_description: str
    is_ending: bool
    ending_type: str | None
    image_url: str | None
    audio_url: str | None
    failure_reason: str | None


class StoryTreeResponse(ContractModel):
    story: StoryResponse
    nodes: list[StoryNodeResponse]
    choices: list[StoryChoiceResponse]


class CharacterResponse(ContractModel):
    name: str
    role: str
    appearance: str
    personality: str


class StoryBibleSummaryResponse(ContractModel):
    """The reader-visible part of the bible; prompt fragments stay server-side."""

    genre: str
    tone: str
    themes: list[str]
    world: str
    art_style: str
    characters: list[CharacterResponse]


class StoryCreateResponse(ContractModel):
    story: StoryResponse
    bible: StoryBibleSummaryResponse
    root: StoryNodeResponse
    initial_choices: list[StoryChoiceResponse]


class NodeOutcomeResponse(ContractModel):
    node_id: str
    node_key: str
    status: Literal["ready", "failed", "skipped"]
    error: str | None
    children_created: int
    image_degraded: bool
    audio_degraded: bool


class BatchResultResponse(ContractModel):
    story_id: str
    generated: int
    remaining_pending: int
    story_status: StoryStatusLiteral
    progress_percent: int
    outcomes: list[NodeOutcomeResponse]


class NodeCountResponse(ContractModel):
    story_id: str
    affected: int


class BackfillImagesResponse(ContractModel):
    """Illustrations recovered for nodes that were saved without one."""

    story_id: str
    attempted: int
    filled: int
    still_missing: int
    cover_image_url: str | None
