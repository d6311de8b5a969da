"""Python-first interface for the story_tree HTTP API."""

from __future__ import annotations

import httpx

from story_tree.api.contracts import (
    BackfillImagesRequest,
    BackfillImagesResponse,
    BatchResultResponse,
    GenerateBatchRequest,
    NodeCountResponse,
    ReclaimStaleRequest,
    StoryCreateRequest,
    StoryCreateResponse,
    StoryStatusResponse,
    StoryTreeResponse,
)


class StoryTreeApiClient:
    """Tiny typed API client for Python users."""

    def __init__(self, api_base_url: str = "http://127.0.0.1:8000") -> None:
        """Initialize client with an API base URL."""
        self._api_base_url = api_base_url.rstrip("/")

    @property
    def api_base_url(self) -> str:
        """Return normalized API base URL."""
        return self._api_base_url

    def _story_url(self, story_id: str, suffix: str = "") -> str:
        return f"{self._api_base_url}/api/v1/stories/{story_id}{suffix}"

    def create_story(self, request: StoryCreateRequest) -> StoryCreateResponse:
        """Create a story; blocks while the bible and root chapter are generated."""
        response = httpx.post(
            f"{self._api_base_url}/api/v1/stories",
            json=request.model_dump(mode="json", exclude_none=True),
            timeout=300.0,
        )
        response.raise_for_status()
        return StoryCreateResponse.model_validate(response.json())

    def get_status(self, story_id: str) -> StoryStatusResponse:
        response = httpx.get(self._story_url(story_id), timeout=30.0)
        response.raise_for_status()
        return StoryStatusResponse.model_validate(response.json())

    def get_tree(self, story_id: str) -> StoryTreeResponse:
        response = httpx.get(self._story_url(story_id, "/tree"), timeout=30.0)
        response.raise_for_status()
        return StoryTreeResponse.model_validate(response.json())

    def generate_batch(self, story_id: str, *, max_nodes: int | None = None) -> BatchResultResponse:
        """Trigger one bounded generation batch."""
        request = GenerateBatchRequest(max_nodes=max_nodes)
        response = httpx.post(
            self._story_url(story_id, "/generate"),
            json=request.model_dump(mode="json"),
            timeout=900.0,
        )
        response.raise_for_status()
        return BatchResultResponse.model_validate(response.json())

    def requeue_failed(self, story_id: str) -> NodeCountResponse:
        response = httpx.post(self._story_url(story_id, "/requeue-failed"), json={}, timeout=30.0)
        response.raise_for_status()
        return NodeCountResponse.model_validate(response.json())

    def reclaim_stale(self, story_id: str, *, stale_after_seconds: int = 600) -> NodeCountResponse:
        request = ReclaimStaleRequest(stale_after_seconds=stale_after_seconds)
        response = httpx.post(
            self._story_url(story_id, "/reclaim-stale"),
            json=request.model_dump(mode="json"),
            timeout=30.0,
        )
        response.raise_for_status()
        return NodeCountResponse.model_validate(response.json())

    def backfill_images(self, story_id: str, *, max_nodes: int | None = None) -> BackfillImagesResponse:
        """Retry illustrations for ready nodes that have none."""
        request = BackfillImagesRequest(max_nodes=max_nodes)
        response = httpx.post(
            self._story_url(story_id, "/backfill-images"),
            json=request.model_dump(mode="json"),
            timeout=900.0,
        )
        response.raise_for_status()
        return BackfillImagesResponse.model_validate(response.json())


__all__ = ["StoryCreateRequest", "StoryTreeApiClient"]
