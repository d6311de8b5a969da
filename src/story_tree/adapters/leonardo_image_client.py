"""Leonardo-style REST image client: one submit call, then status polls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

import httpx

from story_tree.domain.errors import ExternalServiceError
from story_tree.domain.ports import ImageJobStatus, ImageRequest

DEFAULT_IMAGE_API_BASE: Final[str] = "https://cloud.leonardo.ai/api/rest/v1"

_MODEL_LUCID_ORIGIN: Final[str] = "7b592283-e8a7-4c5a-9ba6-d18c31f258b9"
_MODEL_PHOENIX: Final[str] = "de7d3faf-762f-48e0-b3b7-9d0ac3a3fcf3"
_MODEL_ANIME_XL: Final[str] = "e71a1c2f-4f80-4800-934f-2c68979d8cc8"

_STYLE_CINEMATIC: Final[str] = "a5632c7c-ddbb-4e2f-ba34-8456ab3ac436"
_STYLE_DYNAMIC: Final[str] = "111dc692-d470-4eec-b791-3475abac4c46"
_STYLE_CREATIVE: Final[str] = "6fedbf1f-4a17-45ec-84fb-92fe524a29ef"
_STYLE_MOODY: Final[str] = "621e1c9a-6319-4bee-a12d-ae40659162fa"
_STYLE_VIBRANT: Final[str] = "dee282d3-891f-4f73-ba02-7f8131e5541b"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageModelConfig:
    model_id: str
    style_uuid: str
    contrast: float


IMAGE_MODEL_CONFIGS: Final[dict[str, ImageModelConfig]] = {
    "noir": ImageModelConfig(model_id=_MODEL_LUCID_ORIGIN, style_uuid=_STYLE_MOODY, contrast=4.0),
    "manga": ImageModelConfig(model_id=_MODEL_ANIME_XL, style_uuid=_STYLE_DYNAMIC, contrast=3.5),
    "western": ImageModelConfig(
        model_id=_MODEL_LUCID_ORIGIN, style_uuid=_STYLE_CINEMATIC, contrast=3.5
    ),
    "cyberpunk": ImageModelConfig(
        model_id=_MODEL_LUCID_ORIGIN, style_uuid=_STYLE_VIBRANT, contrast=4.0
    ),
    "horror": ImageModelConfig(model_id=_MODEL_LUCID_ORIGIN, style_uuid=_STYLE_MOODY, contrast=4.5),
    "fantasy": ImageModelConfig(model_id=_MODEL_PHOENIX, style_uuid=_STYLE_CREATIVE, contrast=3.5),
}


def image_model_config(style_tag: str) -> ImageModelConfig:
    return IMAGE_MODEL_CONFIGS.get(style_tag.strip().lower(), IMAGE_MODEL_CONFIGS["western"])


class LeonardoImageClient:
    """Submit generation jobs and translate job status into `ImageJobStatus`."""

    def __init__(
        self,
        *,
        api_key: str,
        api_base_url: str = DEFAULT_IMAGE_API_BASE,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must not be empty.")
        self._api_key = api_key
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "authorization": f"Bearer {self._api_key}",
        }

    def submit(self, request: ImageRequest) -> str:
        config = image_model_config(request.style_tag)
        body: dict[str, Any] = {
            "prompt": request.prompt,
            "modelId": config.model_id,
            "width": request.width,
            "height": request.height,
            "num_images": 1,
            "contrast": config.contrast,
            "styleUUID": config.style_uuid,
            "alchemy": False,
        }
        try:
            response = httpx.post(
                f"{self._api_base_url}/generations",
                json=body,
                headers=self._headers(),
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError("image", f"failed to create generation: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError("image", "create response was not JSON") from exc

        job = payload.get("sdGenerationJob") if isinstance(payload, dict) else None
        generation_id = job.get("generationId") if isinstance(job, dict) else None
        if not generation_id:
            raise ExternalServiceError("image", "no generation id returned")
        logger.info("image.submitted generation_id=%s model_id=%s", generation_id, config.model_id)
        return str(generation_id)

    def poll(self, job_id: str) -> ImageJobStatus:
        try:
            response = httpx.get(
                f"{self._api_base_url}/generations/{job_id}",
                headers=self._headers(),
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError("image", f"poll failed for {job_id}: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError("image", "poll response was not JSON") from exc

        generation = payload.get("generations_by_pk") if isinstance(payload, dict) else None
        if not isinstance(generation, dict):
            return ImageJobStatus(state="pending")
        status = str(generation.get("status", "")).upper()
        if status == "COMPLETE":
            images = generation.get("generated_images") or []
            url = images[0].get("url") if images and isinstance(images[0], dict) else None
            return ImageJobStatus(state="complete", image_url=str(url) if url else None)
        if status == "FAILED":
            return ImageJobStatus(state="failed")
        return ImageJobStatus(state="pending")

    def download(self, image_url: str) -> bytes:
        """Fetch finished image bytes from the provider CDN; no auth header is sent."""
        try:
            response = httpx.get(image_url, timeout=self._timeout_seconds, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError("image", f"failed to download {image_url}: {exc}") from exc
        if not response.content:
            raise ExternalServiceError("image", f"empty image body from {image_url}")
        logger.info("image.downloaded bytes=%s", len(response.content))
        return response.content
