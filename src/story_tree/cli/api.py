"""CLI entrypoint for serving the story_tree HTTP API."""

from __future__ import annotations

import argparse
import os

import uvicorn

from story_tree.adapters.observability import configure_runtime_logging


def build_arg_parser() -> argparse.ArgumentParser:
    """Create CLI args for the API server process."""
    parser = argparse.ArgumentParser(description="Serve story_tree API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    parser.add_argument(
        "--db-path",
        default="",
        help="SQLite path for story persistence (default: work/local/story_tree.db).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse CLI flags and start uvicorn with the app factory."""
    configure_runtime_logging()
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    db_path = str(parsed.db_path).strip()
    if db_path:
        os.environ["STORY_TREE_DB_PATH"] = db_path
    uvicorn.run(
        "story_tree.api.app:create_app",
        factory=True,
        host=str(parsed.host),
        port=int(parsed.port),
        reload=bool(parsed.reload),
    )


if __name__ == "__main__":
    main()
