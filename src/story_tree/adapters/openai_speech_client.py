"""OpenAI text-to-speech client returning raw MP3 bytes."""

from __future__ import annotations

import logging
from typing import Final

import httpx

from story_tree.domain.errors import ExternalServiceError

DEFAULT_SPEECH_API_BASE: Final[str] = "https://api.openai.com/v1"
DEFAULT_SPEECH_MODEL: Final[str] = "tts-1-hd"
MAX_SPEECH_INPUT_CHARS: Final[int] = 4096

logger = logging.getLogger(__name__)


class OpenAISpeechClient:
    def __init__(
        self,
        *,
        api_key: str,
        api_base_url: str = DEFAULT_SPEECH_API_BASE,
        model: str = DEFAULT_SPEECH_MODEL,
        timeout_seconds: float = 60.0,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must not be empty.")
        self._api_key = api_key
        self._api_base_url = api_base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds

    def synthesize(self, *, text: str, voice: str, speed: float) -> bytes:
        """Narrate `text`; input beyond the service limit is cut off."""
        cleaned = text.strip()
        if not cleaned:
            raise ExternalServiceError("speech", "nothing to narrate")
        try:
            response = httpx.post(
                f"{self._api_base_url}/audio/speech",
                json={
                    "model": self._model,
                    "input": cleaned[:MAX_SPEECH_INPUT_CHARS],
                    "voice": voice,
                    "speed": speed,
                },
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError("speech", f"synthesis failed: {exc}") from exc
        if not response.content:
            raise ExternalServiceError("speech", "synthesis returned no audio")
        logger.info("speech.done voice=%s bytes=%s", voice, len(response.content))
        return response.content
