from __future__ import annotations

import os
from pathlib import Path

import pytest
from fakes import AllowAllLimiter, make_services

from story_tree.adapters.runtime_config import GenerationSettings
from story_tree.adapters.sqlite_story_store import SQLiteStoryStore
from story_tree.application.story_service import StoryTreeService
from story_tree.cli import api as api_cli
from story_tree.cli import create_story, process_queue


@pytest.fixture
def fake_service(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> StoryTreeService:
    service = StoryTreeService(
        repository=SQLiteStoryStore(db_path=tmp_path / "cli.db"),
        services=make_services(),
        usage_limiter=AllowAllLimiter(),
    )
    for module in ("create_story", "process_queue"):
        monkeypatch.setattr(f"story_tree.cli.{module}.configure_runtime_logging", lambda: None)
        monkeypatch.setattr(
            f"story_tree.cli.{module}.build_story_service",
            lambda settings: service,
        )
    return service


def test_api_cli_calls_uvicorn_factory(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []

    def fake_run(app: str, factory: bool, host: str, port: int, reload: bool) -> None:
        calls.append({"app": app, "factory": factory, "host": host, "port": port, "reload": reload})

    monkeypatch.setattr("story_tree.cli.api.configure_runtime_logging", lambda: None)
    monkeypatch.setattr("story_tree.cli.api.uvicorn.run", fake_run)
    api_cli.main(["--host", "0.0.0.0", "--port", "9000", "--reload"])

    assert calls == [
        {
            "app": "story_tree.api.app:create_app",
            "factory": True,
            "host": "0.0.0.0",
            "port": 9000,
            "reload": True,
        }
    ]


def test_api_cli_sets_db_path_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORY_TREE_DB_PATH", raising=False)
    monkeypatch.setattr("story_tree.cli.api.configure_runtime_logging", lambda: None)
    monkeypatch.setattr("story_tree.cli.api.uvicorn.run", lambda *args, **kwargs: None)
    api_cli.main(["--db-path", "work/local/custom.db"])
    assert os.environ["STORY_TREE_DB_PATH"] == "work/local/custom.db"


def test_create_story_cli_prints_summary(
    fake_service: StoryTreeService, capsys: pytest.CaptureFixture[str]
) -> None:
    create_story.main(["--owner-id", "reader-1", "--premise", "A forged ledger surfaces.", "--style", "horror"])
    out = capsys.readouterr().out
    assert "Story id: " in out
    assert "Title: Turn" in out
    assert "Characters: Mara Voss, Ilya Brandt" in out
    assert "Status: generating" in out
    assert "Pending nodes: 2" in out


def test_create_story_cli_reads_premise_file(
    fake_service: StoryTreeService, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    premise_file = tmp_path / "premise.txt"
    premise_file.write_text("A drowned port keeps a second ledger.\n", encoding="utf-8")
    create_story.main(["--owner-id", "reader-1", "--premise-file", str(premise_file)])
    assert "Status: generating" in capsys.readouterr().out


def test_create_story_cli_requires_premise(fake_service: StoryTreeService) -> None:
    with pytest.raises(SystemExit):
        create_story.main(["--owner-id", "reader-1"])


def test_create_story_cli_reports_engine_errors(fake_service: StoryTreeService) -> None:
    with pytest.raises(SystemExit, match="Story creation failed"):
        create_story.main(
            ["--owner-id", "reader-1", "--premise", "p", "--min-chapters", "5", "--max-chapters", "2"]
        )


def test_process_queue_cli_runs_until_done(
    fake_service: StoryTreeService, capsys: pytest.CaptureFixture[str]
) -> None:
    created = fake_service.create_story(owner_id="reader-1", premise="p", min_chapters=1, max_chapters=1)
    process_queue.main(["--story-id", created.story.story_id, "--until-done", "--max-nodes", "1"])
    out = capsys.readouterr().out
    assert "Batch 1: generated=1" in out
    assert "Story status: fully_generated (100%)" in out


def test_process_queue_cli_unknown_story(fake_service: StoryTreeService) -> None:
    with pytest.raises(SystemExit, match="Queue processing failed"):
        process_queue.main(["--story-id", "missing"])


def test_run_batches_stops_after_one_batch_without_until_done(
    fake_service: StoryTreeService, capsys: pytest.CaptureFixture[str]
) -> None:
    created = fake_service.create_story(owner_id="reader-1", premise="p")
    generated = process_queue.run_batches(
        service=fake_service,
        story_id=created.story.story_id,
        max_nodes=1,
        until_done=False,
        max_batches=10,
    )
    assert generated == 1
    assert capsys.readouterr().out.count("Batch ") == 1
    with pytest.raises(ValueError):
        process_queue.run_batches(
            service=fake_service,
            story_id=created.story.story_id,
            max_nodes=1,
            until_done=True,
            max_batches=0,
        )


def test_cli_settings_honor_db_path_override(
    fake_service: StoryTreeService, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    seen: list[GenerationSettings] = []

    def capture(settings: GenerationSettings) -> StoryTreeService:
        seen.append(settings)
        return fake_service

    monkeypatch.setattr("story_tree.cli.create_story.build_story_service", capture)
    create_story.main(
        ["--owner-id", "reader-1", "--premise", "p", "--db-path", str(tmp_path / "override.db")]
    )
    assert seen[0].db_path == tmp_path / "override.db"


def test_process_queue_cli_backfills_images(
    fake_service: StoryTreeService, capsys: pytest.CaptureFixture[str]
) -> None:
    created = fake_service.create_story(owner_id="reader-1", premise="p", min_chapters=1, max_chapters=1)
    process_queue.main(["--story-id", created.story.story_id, "--max-nodes", "1", "--backfill-images"])
    out = capsys.readouterr().out
    assert "Backfilled images: 0/0 still_missing=0" in out
