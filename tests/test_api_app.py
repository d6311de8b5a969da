from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fakes import (
    AllowAllLimiter,
    FakeImageGenerator,
    ScriptedTextGenerator,
    chapter_json,
    make_services,
)
from fastapi.testclient import TestClient

from story_tree.adapters.sqlite_story_store import SQLiteStoryStore
from story_tree.api.app import create_app
from story_tree.application.story_service import StoryTreeService
from story_tree.domain.errors import ExternalServiceError, LimitExceededError
from story_tree.domain.ports import TextRequest


class _DenyingLimiter:
    def enforce(self, *, owner_id: str, action: str) -> None:
        raise LimitExceededError(f"{action} limit reached")


def _client(
    tmp_path: Path,
    *,
    text_generator: ScriptedTextGenerator | None = None,
    image_generator: FakeImageGenerator | None = None,
    limiter: Any = None,
) -> TestClient:
    service = StoryTreeService(
        repository=SQLiteStoryStore(db_path=tmp_path / "api.db"),
        services=make_services(text_generator=text_generator, image_generator=image_generator),
        usage_limiter=limiter or AllowAllLimiter(),
    )
    return TestClient(create_app(service=service))


def _create(client: TestClient, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "owner_id": "reader-1",
        "premise": "A forged ledger surfaces in a drowned port.",
        "style_tag": "noir",
        "audience": "adult",
        "tone": "dark",
    }
    payload.update(overrides)
    response = client.post("/api/v1/stories", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_and_root_endpoints(tmp_path: Path) -> None:
    client = _client(tmp_path)
    health = client.get("/healthz")
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "service": "story_tree"}

    root = client.get("/api/v1")
    assert root.status_code == 200
    assert "/api/v1/stories/{story_id}/generate" in root.json()["endpoints"]


def test_create_story_returns_bible_root_and_initial_choices(tmp_path: Path) -> None:
    client = _client(tmp_path)
    body = _create(client, style_tag="NOIR")

    assert body["story"]["status"] == "generating"
    assert body["story"]["style_tag"] == "noir"
    assert body["story"]["title"] == "Turn"
    assert body["bible"]["genre"] == "mystery"
    assert [character["name"] for character in body["bible"]["characters"]] == [
        "Mara Voss",
        "Ilya Brandt",
    ]
    assert body["root"]["node_key"] == "start"
    assert body["root"]["generation_status"] == "ready"
    assert len(body["initial_choices"]) == 2
    assert all(choice["from_node_id"] == body["root"]["node_id"] for choice in body["initial_choices"])


@pytest.mark.parametrize(
    "overrides",
    [
        {"style_tag": "watercolor"},
        {"audience": "toddlers"},
        {"owner_id": "has spaces"},
        {"premise": ""},
        {"min_chapters": 5, "max_chapters": 2},
        {"unexpected": True},
    ],
)
def test_create_story_rejects_invalid_payloads(tmp_path: Path, overrides: dict[str, Any]) -> None:
    client = _client(tmp_path)
    payload = {"owner_id": "reader-1", "premise": "A premise.", **overrides}
    response = client.post("/api/v1/stories", json=payload)
    assert response.status_code == 422


def test_status_and_tree_after_batches(tmp_path: Path) -> None:
    client = _client(tmp_path)
    story_id = _create(client)["story"]["story_id"]

    status = client.get(f"/api/v1/stories/{story_id}")
    assert status.status_code == 200
    assert status.json()["progress_percent"] == 33
    assert status.json()["nodes_pending"] == 2

    batch = client.post(f"/api/v1/stories/{story_id}/generate", json={"max_nodes": 1})
    assert batch.status_code == 200
    body = batch.json()
    assert body["generated"] == 1
    assert body["outcomes"][0]["status"] == "ready"
    assert body["outcomes"][0]["children_created"] == 2
    assert body["remaining_pending"] == 3

    default_batch = client.post(f"/api/v1/stories/{story_id}/generate")
    assert default_batch.status_code == 200
    assert default_batch.json()["generated"] == 3

    tree = client.get(f"/api/v1/stories/{story_id}/tree")
    assert tree.status_code == 200
    nodes = tree.json()["nodes"]
    assert nodes[0]["node_key"] == "start"
    assert len(tree.json()["choices"]) == len(nodes) - 1


def test_generate_rejects_out_of_range_batch(tmp_path: Path) -> None:
    client = _client(tmp_path)
    story_id = _create(client)["story"]["story_id"]
    response = client.post(f"/api/v1/stories/{story_id}/generate", json={"max_nodes": 0})
    assert response.status_code == 422


def test_unknown_story_is_404(tmp_path: Path) -> None:
    client = _client(tmp_path)
    assert client.get("/api/v1/stories/missing").status_code == 404
    assert client.get("/api/v1/stories/missing/tree").status_code == 404
    assert client.post("/api/v1/stories/missing/generate").status_code == 404
    assert client.post("/api/v1/stories/missing/requeue-failed").status_code == 404


def test_quota_exceeded_is_429(tmp_path: Path) -> None:
    client = _client(tmp_path, limiter=_DenyingLimiter())
    response = client.post(
        "/api/v1/stories", json={"owner_id": "reader-1", "premise": "A premise."}
    )
    assert response.status_code == 429


def test_text_service_outage_is_502(tmp_path: Path) -> None:
    def outage(request: TextRequest) -> str:
        raise ExternalServiceError("text", "upstream down")

    client = _client(tmp_path, text_generator=ScriptedTextGenerator(outage))
    response = client.post(
        "/api/v1/stories", json={"owner_id": "reader-1", "premise": "A premise."}
    )
    assert response.status_code == 502
    assert response.json()["detail"] == "text service unavailable"


def test_unusable_root_chapter_is_502(tmp_path: Path) -> None:
    client = _client(
        tmp_path,
        text_generator=ScriptedTextGenerator(lambda request: chapter_json(choices=1)),
    )
    response = client.post(
        "/api/v1/stories", json={"owner_id": "reader-1", "premise": "A premise."}
    )
    assert response.status_code == 502
    assert response.json()["detail"] == "Generator returned unusable output"


def test_requeue_and_reclaim_endpoints(tmp_path: Path) -> None:
    client = _client(tmp_path)
    story_id = _create(client)["story"]["story_id"]

    requeue = client.post(f"/api/v1/stories/{story_id}/requeue-failed")
    assert requeue.status_code == 200
    assert requeue.json() == {"story_id": story_id, "affected": 0}

    reclaim = client.post(
        f"/api/v1/stories/{story_id}/reclaim-stale", json={"stale_after_seconds": 60}
    )
    assert reclaim.status_code == 200
    assert reclaim.json()["affected"] == 0

    too_short = client.post(
        f"/api/v1/stories/{story_id}/reclaim-stale", json={"stale_after_seconds": 1}
    )
    assert too_short.status_code == 422


def test_requeue_on_completed_story_is_409(tmp_path: Path) -> None:
    client = _client(tmp_path)
    story_id = _create(client, min_chapters=1, max_chapters=1)["story"]["story_id"]
    for _ in range(5):
        result = client.post(f"/api/v1/stories/{story_id}/generate").json()
        if result["remaining_pending"] == 0:
            break
    assert result["story_status"] == "fully_generated"
    assert client.post(f"/api/v1/stories/{story_id}/requeue-failed").status_code == 409


def test_backfill_images_endpoint_fills_root_and_cover(tmp_path: Path) -> None:
    image_generator = FakeImageGenerator(fail_submit=True)
    client = _client(tmp_path, image_generator=image_generator)
    created = _create(client)
    story_id = created["story"]["story_id"]
    assert created["story"]["cover_image_url"] is None
    assert created["root"]["image_url"] is None

    image_generator.fail_submit = False
    response = client.post(f"/api/v1/stories/{story_id}/backfill-images", json={"max_nodes": 5})
    assert response.status_code == 200, response.text
    body = response.json()
    assert (body["attempted"], body["filled"], body["still_missing"]) == (1, 1, 0)
    assert body["cover_image_url"].startswith(f"memory://images/{story_id}/")

    tree = client.get(f"/api/v1/stories/{story_id}/tree").json()
    assert tree["story"]["cover_image_url"] == body["cover_image_url"]
    assert tree["nodes"][0]["image_url"] == body["cover_image_url"]

    assert client.post("/api/v1/stories/missing/backfill-images").status_code == 404
    assert (
        client.post(f"/api/v1/stories/{story_id}/backfill-images", json={"max_nodes": 0}).status_code
        == 422
    )
    assert "/api/v1/stories/{story_id}/backfill-images" in client.get("/api/v1").json()["endpoints"]
