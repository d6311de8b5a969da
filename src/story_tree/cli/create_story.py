"""CLI for creating one story: bible, root chapter and initial choices."""

from __future__ import annotations

import argparse
from pathlib import Path

from story_tree.adapters.observability import configure_runtime_logging
from story_tree.application.wiring import build_story_service, load_settings
from story_tree.core.prompts import AUDIENCE_LABELS, DEFAULT_STYLE_TAG, STYLE_PRESETS
from story_tree.domain.errors import StoryEngineError


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create a branching story from a premise.")
    parser.add_argument("--db-path", default="", help="Override STORY_TREE_DB_PATH.")
    parser.add_argument("--owner-id", required=True)
    parser.add_argument("--premise", default="", help="Premise text.")
    parser.add_argument("--premise-file", default="", help="Read the premise from a UTF-8 file.")
    parser.add_argument("--style", choices=sorted(STYLE_PRESETS), default=DEFAULT_STYLE_TAG)
    parser.add_argument("--audience", choices=sorted(AUDIENCE_LABELS), default="adult")
    parser.add_argument("--tone", default="dramatic")
    parser.add_argument("--min-chapters", type=int, default=None)
    parser.add_argument("--max-chapters", type=int, default=None)
    return parser


def _read_premise(parsed: argparse.Namespace) -> str:
    premise_file = str(parsed.premise_file).strip()
    if premise_file:
        return Path(premise_file).read_text(encoding="utf-8").strip()
    return str(parsed.premise).strip()


def main(argv: list[str] | None = None) -> None:
    configure_runtime_logging()
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    premise = _read_premise(parsed)
    if not premise:
        parser.error("one of --premise or --premise-file is required")

    db_path = str(parsed.db_path).strip()
    settings = load_settings(db_path=Path(db_path) if db_path else None)
    service = build_story_service(settings)
    try:
        created = service.create_story(
            owner_id=str(parsed.owner_id),
            premise=premise,
            style_tag=str(parsed.style),
            audience=str(parsed.audience),
            tone=str(parsed.tone),
            min_chapters=parsed.min_chapters,
            max_chapters=parsed.max_chapters,
        )
    except (StoryEngineError, ValueError) as exc:
        raise SystemExit(f"Story creation failed: {exc}") from exc

    status = service.read_story_status(story_id=created.story.story_id)
    print(f"Story id: {created.story.story_id}")
    print(f"Title: {created.story.title}")
    print(f"Characters: {', '.join(created.bible.character_names())}")
    print(f"Status: {status.status}")
    print(f"Pending nodes: {status.nodes_pending}")


if __name__ == "__main__":
    main()
