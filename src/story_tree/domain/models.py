"""Core story-tree domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Literal

StoryStatus = Literal["pending", "generating", "fully_generated", "failed"]
NodeStatus = Literal["pending", "generating", "ready", "failed"]

ROOT_NODE_KEY: Final[str] = "start"
MAX_CHOICES: Final[int] = 3
ENDING_TYPES: Final[tuple[str, ...]] = ("good", "bad", "neutral", "bittersweet")
EMOTIONAL_WEIGHTS: Final[tuple[str, ...]] = (
    "hope",
    "fear",
    "anger",
    "determination",
    "despair",
    "curiosity",
)

# Lower numbers are generated first. The number is persisted on the edge when it
# is created, so edits here never reorder work that is already scheduled.
EMOTIONAL_WEIGHT_PRIORITY: Final[dict[str, int]] = {
    "determination": 1,
    "fear": 1,
    "hope": 2,
    "anger": 2,
    "curiosity": 3,
    "despair": 3,
}
DEFAULT_CHOICE_PRIORITY: Final[int] = 3

CREATE_STORY_ACTION: Final[str] = "create_story"
GENERATE_BATCH_ACTION: Final[str] = "generate_batch"


def priority_for_weight(emotional_weight: str) -> int:
    """Map an emotional-weight label to its scheduling priority."""
    return EMOTIONAL_WEIGHT_PRIORITY.get(emotional_weight.strip().lower(), DEFAULT_CHOICE_PRIORITY)


@dataclass(frozen=True)
class StoryCharacter:
    """A bible character with a stable visual identity."""

    name: str
    role: str
    appearance: str
    personality: str
    background: str = ""
    arc: str = ""


@dataclass(frozen=True)
class StoryLocation:
    name: str
    description: str
    atmosphere: str = ""


@dataclass(frozen=True)
class StorySetting:
    """World description shared by every chapter."""

    world: str
    time_period: str
    atmosphere: str
    locations: tuple[StoryLocation, ...] = ()


@dataclass(frozen=True)
class ArtStyle:
    """Single illustration style used for every panel of one story."""

    style: str
    color_palette: str
    line_work: str
    lighting: str
    mood: str
    influences: tuple[str, ...] = ()


@dataclass(frozen=True)
class PossibleEnding:
    ending_type: str
    description: str


@dataclass(frozen=True)
class NarrativeOutline:
    """Genre, themes and chapter bounds for the whole tree."""

    genre: str
    tone: str
    plot_outline: str
    themes: tuple[str, ...] = ()
    min_chapters: int = 3
    max_chapters: int = 6
    possible_endings: tuple[PossibleEnding, ...] = ()


@dataclass(frozen=True)
class StoryBible:
    """Immutable consistency reference passed explicitly into every generation call."""

    characters: tuple[StoryCharacter, ...]
    setting: StorySetting
    art_style: ArtStyle
    narrative: NarrativeOutline
    style_prompt_prefix: str
    character_prompt_map: dict[str, str] = field(default_factory=dict)

    def character_names(self) -> list[str]:
        return [character.name for character in self.characters]

    def visual_descriptor(self, name: str) -> str | None:
        return self.character_prompt_map.get(name)


@dataclass(frozen=True)
class ContextEntry:
    """Digest of one ancestor chapter; never carries the full chapter text."""

    node_key: str
    title: str
    summary: str
    characters_present: tuple[str, ...] = ()
    choice_made: str | None = None


@dataclass(frozen=True)
class Story:
    """Story record mutated only by the generation engine."""

    story_id: str
    owner_id: str
    premise: str
    style_tag: str
    audience: str
    tone: str
    min_chapters: int
    max_chapters: int
    status: StoryStatus
    title: str = ""
    cover_image_url: str | None = None
    progress_percent: int = 0
    nodes_generated: int = 0
    nodes_planned: int = 0
    nodes_failed: int = 0
    created_at_utc: str = ""
    updated_at_utc: str = ""


@dataclass(frozen=True)
class StoryNode:
    """One chapter position in the tree; content stays empty until generated."""

    node_id: str
    story_id: str
    node_key: str
    depth: int
    order_index: int
    generation_status: NodeStatus
    context_chain: tuple[ContextEntry, ...] = ()
    parent_choice_id: str | None = None
    title: str = ""
    content: str = ""
    chapter_summary: str = ""
    characters_present: tuple[str, ...] = ()
    panel_description: str = ""
    is_ending: bool = False
    ending_type: str | None = None
    image_url: str | None = None
    audio_url: str | None = None
    failure_reason: str | None = None
    claimed_at_utc: str | None = None


@dataclass(frozen=True)
class StoryChoice:
    """Edge from a generated node to the placeholder it leads to."""

    choice_id: str
    from_node_id: str
    to_node_id: str
    choice_text: str
    consequence_hint: str
    emotional_weight: str
    priority: int
    choice_order: int


@dataclass(frozen=True)
class PendingWork:
    """A claimed-or-claimable node together with the edge that leads to it."""

    node: StoryNode
    choice_text: str | None
    priority: int


@dataclass(frozen=True)
class NodeCounts:
    """Per-status node counts for one story."""

    pending: int = 0
    generating: int = 0
    ready: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.generating + self.ready + self.failed


@dataclass(frozen=True)
class ChoiceDraft:
    """A choice as returned by the text generator, before it becomes an edge."""

    text: str
    consequence_hint: str
    emotional_weight: str


@dataclass(frozen=True)
class ChapterDraft:
    """Validated chapter payload from the text generator."""

    title: str
    content: str
    panel_description: str
    chapter_summary: str
    characters_present: tuple[str, ...]
    is_ending: bool
    ending_type: str | None
    choices: tuple[ChoiceDraft, ...]


@dataclass(frozen=True)
class ChildSpec:
    """Placeholder node plus edge to create when a chapter is persisted."""

    node_key: str
    choice: ChoiceDraft
    choice_order: int
    priority: int
    context_chain: tuple[ContextEntry, ...]


@dataclass(frozen=True)
class GeneratedChapter:
    """Everything written onto a node when it becomes ready."""

    draft: ChapterDraft
    image_url: str | None = None
    audio_url: str | None = None
