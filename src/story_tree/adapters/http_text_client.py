"""OpenAI-compatible chat completions client (OpenAI, DeepSeek, local gateways)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from story_tree.domain.errors import ExternalServiceError
from story_tree.domain.ports import TextRequest

logger = logging.getLogger(__name__)


class HttpChatCompletionsClient:
    """Send one system+user prompt pair and return the first message content."""

    def __init__(
        self,
        *,
        api_base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: float = 120.0,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must not be empty.")
        self._api_base_url = api_base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds

    @property
    def model(self) -> str:
        return self._model

    def _payload(self, request: TextRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def complete(self, request: TextRequest) -> str:
        try:
            response = httpx.post(
                f"{self._api_base_url}/chat/completions",
                json=self._payload(request),
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "text.http_error model=%s status=%s", self._model, exc.response.status_code
            )
            raise ExternalServiceError(
                "text", f"completion request failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError("text", f"completion request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError("text", "completion response was not JSON") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError("text", "completion response had no message content") from exc
        if not isinstance(content, str) or not content.strip():
            raise ExternalServiceError("text", "completion response was empty")
        return content
