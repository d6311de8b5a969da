"""Bounded ancestor memory used as generation context instead of full history."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Final

from story_tree.domain.models import ChapterDraft, ContextEntry

MAX_SUMMARY_CHARS: Final[int] = 280
MAX_TITLE_CHARS: Final[int] = 120


def _clip(text: str, limit: int) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: limit - 3].rstrip() + "..."


def chapter_digest(
    *, node_key: str, draft: ChapterDraft, choice_made: str | None = None
) -> ContextEntry:
    """Reduce one generated chapter to the digest its descendants inherit."""
    return ContextEntry(
        node_key=node_key,
        title=_clip(draft.title, MAX_TITLE_CHARS),
        summary=_clip(draft.chapter_summary, MAX_SUMMARY_CHARS),
        characters_present=tuple(dict.fromkeys(draft.characters_present)),
        choice_made=choice_made,
    )


def extend_context_chain(
    chain: Sequence[ContextEntry], digest: ContextEntry
) -> tuple[ContextEntry, ...]:
    """Return a new chain with one more depth level; the input is never mutated."""
    return (*chain, digest)


def render_story_so_far(chain: Sequence[ContextEntry]) -> str:
    if not chain:
        return "This is the opening chapter."
    lines: list[str] = []
    for index, entry in enumerate(chain, start=1):
        line = f"Chapter {index} ({entry.title}): {entry.summary}"
        if entry.characters_present:
            line += f" [Characters: {', '.join(entry.characters_present)}]"
        if entry.choice_made:
            line += f" [Choice: {entry.choice_made}]"
        lines.append(line)
    return "\n".join(lines)


def recent_characters(chain: Sequence[ContextEntry], *, limit: int = 4) -> list[str]:
    """Characters seen most recently along the chain, newest first."""
    seen: list[str] = []
    for entry in reversed(chain):
        for name in entry.characters_present:
            if name not in seen:
                seen.append(name)
            if len(seen) >= limit:
                return seen
    return seen


def context_chain_to_payload(chain: Sequence[ContextEntry]) -> list[dict[str, object]]:
    return [
        {
            "node_key": entry.node_key,
            "title": entry.title,
            "summary": entry.summary,
            "characters_present": list(entry.characters_present),
            "choice_made": entry.choice_made,
        }
        for entry in chain
    ]


def context_chain_from_payload(payload: object) -> tuple[ContextEntry, ...]:
    if not isinstance(payload, list):
        return ()
    entries: list[ContextEntry] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        choice_made = item.get("choice_made")
        entries.append(
            ContextEntry(
                node_key=str(item.get("node_key", "")),
                title=str(item.get("title", "")),
                summary=str(item.get("summary", "")),
                characters_present=tuple(str(name) for name in item.get("characters_present", [])),
                choice_made=str(choice_made) if choice_made is not None else None,
            )
        )
    return tuple(entries)
