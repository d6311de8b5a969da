"""Depth-based ending policy that bounds every branch of the tree."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Final, Literal

from story_tree.domain.models import ChapterDraft

Directive = Literal["force_continue", "continue_normally", "encourage_wrap", "force_end"]

WRAP_WINDOW: Final[int] = 2
DEFAULT_FORCED_ENDING_TYPE: Final[str] = "neutral"


@dataclass(frozen=True)
class EndingDecision:
    """Directive for one depth plus the generator contract it implies."""

    directive: Directive
    depth: int
    min_chapters: int
    max_chapters: int

    @property
    def may_end(self) -> bool:
        return self.directive != "force_continue"

    @property
    def must_end(self) -> bool:
        return self.directive == "force_end"

    @property
    def min_choices(self) -> int:
        return 2 if self.directive == "force_continue" else 1


def _validate_bounds(min_chapters: int, max_chapters: int) -> None:
    if min_chapters < 1:
        raise ValueError("min_chapters must be >= 1.")
    if max_chapters < min_chapters:
        raise ValueError("max_chapters must be >= min_chapters.")


def wrap_threshold(min_chapters: int, max_chapters: int) -> int:
    """First depth at which the generator is asked to start resolving."""
    _validate_bounds(min_chapters, max_chapters)
    return max(min_chapters, max_chapters - WRAP_WINDOW)


def evaluate_ending_policy(*, depth: int, min_chapters: int, max_chapters: int) -> EndingDecision:
    """Map node depth to a generation directive."""
    if depth < 0:
        raise ValueError("depth must be >= 0.")
    threshold = wrap_threshold(min_chapters, max_chapters)
    directive: Directive
    if depth >= max_chapters:
        directive = "force_end"
    elif depth < min_chapters:
        directive = "force_continue"
    elif depth < threshold:
        directive = "continue_normally"
    else:
        directive = "encourage_wrap"
    return EndingDecision(
        directive=directive,
        depth=depth,
        min_chapters=min_chapters,
        max_chapters=max_chapters,
    )


def apply_ending_backstop(draft: ChapterDraft, decision: EndingDecision) -> ChapterDraft:
    """Force a chapter at or past max depth into an ending and drop its choices."""
    if not decision.must_end:
        return draft
    if draft.is_ending and not draft.choices:
        return draft
    return replace(
        draft,
        is_ending=True,
        ending_type=draft.ending_type or DEFAULT_FORCED_ENDING_TYPE,
        choices=(),
    )


def pacing_instruction(decision: EndingDecision) -> str:
    """Prompt text that states the directive's contract to the generator."""
    chapter = f"Chapter {decision.depth + 1}/{decision.max_chapters + 1}"
    if decision.directive == "force_end":
        return (
            f"{chapter}: This is the FINAL chapter. You MUST conclude the story. "
            'Set isEnding: true and return "choices": [].'
        )
    if decision.directive == "encourage_wrap":
        return (
            f"{chapter}: We are approaching the climax. Start resolving plot threads and "
            "move toward an ending. You may end here if it is satisfying."
        )
    if decision.directive == "force_continue":
        return (
            f"{chapter}: Early story. Do NOT end the story. Establish characters and conflict "
            "and provide 2-3 meaningful choices."
        )
    return f"{chapter}: Build tension, develop characters, move the plot forward."
