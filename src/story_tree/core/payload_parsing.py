"""Extract and validate structured payloads returned by the text generator."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from story_tree.domain.errors import BibleInvalid, ValidationError
from story_tree.domain.models import (
    EMOTIONAL_WEIGHTS,
    ENDING_TYPES,
    ArtStyle,
    ChapterDraft,
    ChoiceDraft,
    NarrativeOutline,
    PossibleEnding,
    StoryBible,
    StoryCharacter,
    StoryLocation,
    StorySetting,
)

_EMBEDDED_OBJECT = re.compile(r"\{[\s\S]*\}")
_FALLBACK_WEIGHT = "curiosity"
_SUMMARY_FALLBACK_CHARS = 100

logger = logging.getLogger(__name__)


class DraftModel(BaseModel):
    """Lenient config for generator output: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class CharacterDraft(DraftModel):
    name: str = Field(min_length=1)
    role: str = "supporting"
    appearance: str = Field(min_length=1)
    personality: str = ""
    background: str = ""
    arc: str = ""


class LocationDraft(DraftModel):
    name: str = ""
    description: str = ""
    atmosphere: str = ""


class SettingDraft(DraftModel):
    world: str = Field(min_length=1)
    time_period: str = Field(default="", alias="timePeriod")
    atmosphere: str = ""
    locations: list[LocationDraft] = Field(default_factory=list)


class ArtStyleDraft(DraftModel):
    style: str = Field(min_length=1)
    color_palette: str = Field(default="", alias="colorPalette")
    line_work: str = Field(default="", alias="lineWork")
    influences: list[str] = Field(default_factory=list)
    lighting: str = ""
    mood: str = ""


class EndingDraft(DraftModel):
    ending_type: str = Field(default="neutral", alias="type")
    description: str = ""


class NarrativeDraft(DraftModel):
    genre: str = Field(min_length=1)
    tone: str = ""
    themes: list[str] = Field(default_factory=list)
    plot_outline: str = Field(default="", alias="plotOutline")
    possible_endings: list[EndingDraft] = Field(default_factory=list, alias="possibleEndings")


class BibleDraft(DraftModel):
    characters: list[CharacterDraft] | None = None
    setting: SettingDraft | None = None
    art_style: ArtStyleDraft | None = Field(default=None, alias="artStyle")
    narrative: NarrativeDraft | None = None
    style_prompt_prefix: str = Field(default="", alias="stylePromptPrefix")
    character_prompt_map: dict[str, str] = Field(default_factory=dict, alias="characterPromptMap")


class ChoicePayload(DraftModel):
    text: str = ""
    consequence_hint: str = Field(default="", alias="consequenceHint")
    emotional_weight: str = Field(default=_FALLBACK_WEIGHT, alias="emotionalWeight")

    @field_validator("emotional_weight", mode="before")
    @classmethod
    def _normalize_weight(cls, value: Any) -> str:
        normalized = str(value or "").strip().lower()
        return normalized if normalized in EMOTIONAL_WEIGHTS else _FALLBACK_WEIGHT


class ChapterPayload(DraftModel):
    title: str = ""
    content: str = ""
    panel_description: str = Field(default="", alias="panelDescription")
    chapter_summary: str = Field(default="", alias="chapterSummary")
    characters_present: list[str] | None = Field(default=None, alias="charactersPresent")
    is_ending: bool = Field(default=False, alias="isEnding")
    ending_type: str | None = Field(default=None, alias="endingType")
    choices: list[ChoicePayload] = Field(default_factory=list)

    @field_validator("choices", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


def extract_json_payload(raw_text: str) -> dict[str, Any]:
    """Parse a JSON object, retrying once on the embedded `{...}` span."""
    stripped = raw_text.strip()
    try:
        payload = json.loads(stripped)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        return payload

    match = _EMBEDDED_OBJECT.search(stripped)
    if match is None:
        raise ValidationError("Generator output does not contain a JSON object.")
    logger.info("payload.extract embedded_span_chars=%s", len(match.group(0)))
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Embedded JSON payload is malformed: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Generator output JSON must be an object.")
    return payload


def parse_story_bible(
    raw_text: str,
    *,
    fallback_style_prefix: str,
    min_chapters: int,
    max_chapters: int,
) -> StoryBible:
    """Validate bible output; synthesize non-essential fields, reject missing sections."""
    try:
        payload = extract_json_payload(raw_text)
    except ValidationError as exc:
        raise BibleInvalid(str(exc)) from exc
    try:
        draft = BibleDraft.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise BibleInvalid(f"Story bible failed schema validation: {exc.error_count()} errors") from exc

    if not draft.characters:
        raise BibleInvalid("Story bible is missing characters.")
    missing = [
        name
        for name, section in (
            ("setting", draft.setting),
            ("artStyle", draft.art_style),
            ("narrative", draft.narrative),
        )
        if section is None
    ]
    if missing:
        raise BibleInvalid(f"Story bible is missing required sections: {', '.join(missing)}")
    assert draft.setting is not None
    assert draft.art_style is not None
    assert draft.narrative is not None

    characters = tuple(
        StoryCharacter(
            name=character.name,
            role=character.role,
            appearance=character.appearance,
            personality=character.personality,
            background=character.background,
            arc=character.arc,
        )
        for character in draft.characters
    )
    prompt_map = {
        name: descriptor.strip()
        for name, descriptor in draft.character_prompt_map.items()
        if descriptor.strip()
    }
    for character in characters:
        prompt_map.setdefault(character.name, character.appearance)

    return StoryBible(
        characters=characters,
        setting=StorySetting(
            world=draft.setting.world,
            time_period=draft.setting.time_period,
            atmosphere=draft.setting.atmosphere,
            locations=tuple(
                StoryLocation(
                    name=location.name,
                    description=location.description,
                    atmosphere=location.atmosphere,
                )
                for location in draft.setting.locations
                if location.name
            ),
        ),
        art_style=ArtStyle(
            style=draft.art_style.style,
            color_palette=draft.art_style.color_palette,
            line_work=draft.art_style.line_work,
            lighting=draft.art_style.lighting,
            mood=draft.art_style.mood,
            influences=tuple(draft.art_style.influences),
        ),
        narrative=NarrativeOutline(
            genre=draft.narrative.genre,
            tone=draft.narrative.tone,
            plot_outline=draft.narrative.plot_outline,
            themes=tuple(draft.narrative.themes),
            min_chapters=min_chapters,
            max_chapters=max_chapters,
            possible_endings=tuple(
                PossibleEnding(ending_type=ending.ending_type, description=ending.description)
                for ending in draft.narrative.possible_endings
            ),
        ),
        style_prompt_prefix=draft.style_prompt_prefix or fallback_style_prefix,
        character_prompt_map=prompt_map,
    )


def _characters_mentioned(content: str, bible: StoryBible) -> tuple[str, ...]:
    lowered = content.lower()
    return tuple(name for name in bible.character_names() if name.lower() in lowered)


def _fallback_summary(content: str) -> str:
    """Clipped lead-in of the chapter, never more than half of it."""
    cap = min(_SUMMARY_FALLBACK_CHARS, len(content) // 2)
    return content[:cap].rstrip() + "..."


def parse_chapter_draft(raw_text: str, *, bible: StoryBible) -> ChapterDraft:
    """Validate chapter output. Choices are passed through as returned, never invented."""
    payload = extract_json_payload(raw_text)
    try:
        chapter = ChapterPayload.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Chapter failed schema validation: {exc.error_count()} errors") from exc
    if not chapter.content:
        raise ValidationError("Chapter is missing content.")

    content = chapter.content
    ending_type = (chapter.ending_type or "").strip().lower() or None
    if ending_type not in ENDING_TYPES:
        ending_type = "neutral" if chapter.is_ending else None

    characters = chapter.characters_present
    if characters is None:
        present = _characters_mentioned(content, bible)
    else:
        present = tuple(dict.fromkeys(name for name in characters if name))

    return ChapterDraft(
        title=chapter.title or "Untitled chapter",
        content=content,
        panel_description=chapter.panel_description or content[:200],
        chapter_summary=chapter.chapter_summary or _fallback_summary(content),
        characters_present=present,
        is_ending=chapter.is_ending,
        ending_type=ending_type,
        choices=tuple(
            ChoiceDraft(
                text=choice.text,
                consequence_hint=choice.consequence_hint,
                emotional_weight=choice.emotional_weight,
            )
            for choice in chapter.choices
            if choice.text
        ),
    )
