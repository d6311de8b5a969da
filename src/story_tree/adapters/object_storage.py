"""Object storage backends for narration audio."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

import httpx

from story_tree.domain.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def _safe_key(key: str) -> PurePosixPath:
    path = PurePosixPath(key.strip().lstrip("/"))
    if not path.parts or ".." in path.parts:
        raise ExternalServiceError("storage", f"invalid object key: {key!r}")
    return path


class LocalObjectStorage:
    """Write objects under a root directory and return a URL under `public_base_url`."""

    def __init__(self, *, root_dir: Path, public_base_url: str = "") -> None:
        self._root_dir = root_dir
        self._public_base_url = public_base_url.rstrip("/")

    def upload(self, *, data: bytes, content_type: str, key: str) -> str:
        relative = _safe_key(key)
        target = self._root_dir.joinpath(*relative.parts)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise ExternalServiceError("storage", f"failed to write {relative}: {exc}") from exc
        logger.info("storage.local.write key=%s content_type=%s bytes=%s", relative, content_type, len(data))
        if self._public_base_url:
            return f"{self._public_base_url}/{relative}"
        return target.resolve().as_uri()


class SupabaseObjectStorage:
    """Supabase storage REST upload with upsert; returns the public object URL."""

    def __init__(
        self,
        *,
        project_url: str,
        service_key: str,
        bucket: str = "story-images",
        timeout_seconds: float = 60.0,
    ) -> None:
        if not service_key.strip():
            raise ValueError("service_key must not be empty.")
        self._project_url = project_url.rstrip("/")
        self._service_key = service_key
        self._bucket = bucket
        self._timeout_seconds = timeout_seconds

    def public_url(self, key: str) -> str:
        return f"{self._project_url}/storage/v1/object/public/{self._bucket}/{_safe_key(key)}"

    def upload(self, *, data: bytes, content_type: str, key: str) -> str:
        relative = _safe_key(key)
        try:
            response = httpx.post(
                f"{self._project_url}/storage/v1/object/{self._bucket}/{relative}",
                content=data,
                headers={
                    "Authorization": f"Bearer {self._service_key}",
                    "Content-Type": content_type,
                    "x-upsert": "true",
                },
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError("storage", f"upload failed for {relative}: {exc}") from exc
        return self.public_url(str(relative))
