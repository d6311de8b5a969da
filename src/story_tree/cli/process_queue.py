"""CLI for driving the generation queue of one story."""

from __future__ import annotations

import argparse
from pathlib import Path

from story_tree.adapters.observability import configure_runtime_logging
from story_tree.application.story_service import StoryTreeService
from story_tree.application.wiring import build_story_service, load_settings
from story_tree.domain.errors import StoryEngineError


def build_arg_parser() -> argparse.ArgumentParser:
    """Define CLI flags for batch generation and queue recovery."""
    parser = argparse.ArgumentParser(description="Generate pending nodes for one story.")
    parser.add_argument("--db-path", default="", help="Override STORY_TREE_DB_PATH.")
    parser.add_argument("--story-id", required=True)
    parser.add_argument("--max-nodes", type=int, default=None, help="Nodes per batch.")
    parser.add_argument(
        "--until-done",
        action="store_true",
        help="Keep running batches until nothing is pending or a batch makes no progress.",
    )
    parser.add_argument("--max-batches", type=int, default=20)
    parser.add_argument(
        "--requeue-failed",
        action="store_true",
        help="Return failed nodes to the queue before generating.",
    )
    parser.add_argument(
        "--reclaim-stale-seconds",
        type=int,
        default=0,
        help="Fail nodes claimed longer ago than this many seconds before generating.",
    )
    parser.add_argument(
        "--backfill-images",
        action="store_true",
        help="After generating, retry illustrations for ready nodes that have none.",
    )
    return parser


def run_batches(
    *,
    service: StoryTreeService,
    story_id: str,
    max_nodes: int | None,
    until_done: bool,
    max_batches: int,
) -> int:
    """Run one or more batches; return the number of nodes generated."""
    if max_batches < 1:
        raise ValueError("max_batches must be >= 1.")
    total_generated = 0
    for batch_number in range(1, max_batches + 1):
        result = service.generate_next_batch(story_id=story_id, max_nodes=max_nodes)
        total_generated += result.generated
        failed = sum(1 for outcome in result.outcomes if outcome.status == "failed")
        print(
            f"Batch {batch_number}: generated={result.generated} failed={failed} "
            f"remaining={result.remaining_pending} progress={result.progress_percent}% "
            f"status={result.story_status}"
        )
        if not until_done or result.remaining_pending == 0 or not result.outcomes:
            break
        if result.generated == 0 and failed == 0:
            break
    return total_generated


def main(argv: list[str] | None = None) -> None:
    configure_runtime_logging()
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    story_id = str(parsed.story_id)

    db_path = str(parsed.db_path).strip()
    settings = load_settings(db_path=Path(db_path) if db_path else None)
    service = build_story_service(settings)
    try:
        if int(parsed.reclaim_stale_seconds) > 0:
            reclaimed = service.reclaim_stale_nodes(
                story_id=story_id, stale_after_seconds=int(parsed.reclaim_stale_seconds)
            )
            print(f"Reclaimed stale nodes: {reclaimed}")
        if parsed.requeue_failed:
            print(f"Requeued failed nodes: {service.requeue_failed_nodes(story_id=story_id)}")
        generated = run_batches(
            service=service,
            story_id=story_id,
            max_nodes=parsed.max_nodes,
            until_done=bool(parsed.until_done),
            max_batches=int(parsed.max_batches),
        )
        if parsed.backfill_images:
            backfill = service.backfill_missing_images(story_id=story_id, max_nodes=parsed.max_nodes)
            print(
                f"Backfilled images: {backfill.filled}/{backfill.attempted} "
                f"still_missing={backfill.still_missing}"
            )
    except (StoryEngineError, ValueError) as exc:
        raise SystemExit(f"Queue processing failed: {exc}") from exc

    status = service.read_story_status(story_id=story_id)
    print(f"Generated this run: {generated}")
    print(f"Story status: {status.status} ({status.progress_percent}%)")


if __name__ == "__main__":
    main()
