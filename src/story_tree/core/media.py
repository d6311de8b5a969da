"""Illustration and narration requests with graceful degradation."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from story_tree.core.context_chain import recent_characters
from story_tree.core.prompts import voice_settings
from story_tree.domain.errors import ExternalServiceError
from story_tree.domain.models import ContextEntry, StoryBible
from story_tree.domain.ports import ImageGenerator, ImageRequest, ObjectStorage, SpeechSynthesizer

MAX_IMAGE_PROMPT_CHARS: Final[int] = 3800
IMAGE_PROMPT_SUFFIX: Final[str] = (
    "Highly detailed, professional comic book art, cinematic composition, dramatic angles."
)
AUDIO_CONTENT_TYPE: Final[str] = "audio/mpeg"
IMAGE_CONTENT_TYPE: Final[str] = "image/png"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    """Bounded polling: whichever of attempts or deadline runs out first wins."""

    max_attempts: int = 30
    delay_seconds: float = 2.0
    deadline_seconds: float = 90.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.delay_seconds < 0 or self.deadline_seconds < 0:
            raise ValueError("poll delay and deadline must be >= 0.")


def scene_characters(
    characters_present: Sequence[str], context_chain: Sequence[ContextEntry]
) -> list[str]:
    """Characters to describe in the image: the scene's cast, else the latest ancestors'."""
    if characters_present:
        return list(dict.fromkeys(characters_present))
    return recent_characters(context_chain)


def build_image_prompt(*, bible: StoryBible, panel_description: str, characters: Sequence[str]) -> str:
    prompt = bible.style_prompt_prefix
    for name in characters:
        descriptor = bible.visual_descriptor(name)
        if descriptor:
            prompt += f" Character {name}: {descriptor}."
    prompt += f" SCENE: {panel_description} {IMAGE_PROMPT_SUFFIX}"
    if len(prompt) > MAX_IMAGE_PROMPT_CHARS:
        prompt = prompt[:MAX_IMAGE_PROMPT_CHARS] + "..."
    return prompt


def await_image(
    *,
    image_generator: ImageGenerator,
    job_id: str,
    policy: PollPolicy,
    cancel: threading.Event | None = None,
) -> str:
    """Poll one image job until complete; raise `ExternalServiceError` otherwise."""
    stop = cancel or threading.Event()
    deadline = time.monotonic() + policy.deadline_seconds
    for attempt in range(1, policy.max_attempts + 1):
        try:
            status = image_generator.poll(job_id)
        except ExternalServiceError as exc:
            logger.warning("image.poll_error job_id=%s attempt=%s error=%s", job_id, attempt, exc)
        else:
            if status.state == "complete":
                if not status.image_url:
                    raise ExternalServiceError("image", "generation complete but no image returned")
                return status.image_url
            if status.state == "failed":
                raise ExternalServiceError("image", f"generation {job_id} failed")
        if attempt == policy.max_attempts or time.monotonic() >= deadline:
            break
        if stop.wait(policy.delay_seconds):
            raise ExternalServiceError("image", f"polling cancelled for {job_id}")
    raise ExternalServiceError("image", f"generation {job_id} timed out after {attempt} polls")


def image_object_key(story_id: str, node_id: str) -> str:
    return f"images/{story_id}/{node_id}.png"


def render_illustration(
    *,
    image_generator: ImageGenerator,
    storage: ObjectStorage,
    bible: StoryBible,
    panel_description: str,
    characters_present: Sequence[str],
    context_chain: Sequence[ContextEntry],
    style_tag: str,
    policy: PollPolicy,
    object_key: str,
    cancel: threading.Event | None = None,
) -> str | None:
    """Generate, download and re-host one panel; None when any step fails.

    The returned URL points at our object storage, never at the provider.
    """
    prompt = build_image_prompt(
        bible=bible,
        panel_description=panel_description,
        characters=scene_characters(characters_present, context_chain),
    )
    try:
        job_id = image_generator.submit(
            ImageRequest(
                prompt=prompt,
                style_tag=style_tag,
                style_reference=bible.style_prompt_prefix,
            )
        )
        provider_url = await_image(
            image_generator=image_generator,
            job_id=job_id,
            policy=policy,
            cancel=cancel,
        )
        image = image_generator.download(provider_url)
        return storage.upload(data=image, content_type=IMAGE_CONTENT_TYPE, key=object_key)
    except ExternalServiceError as exc:
        logger.warning("image.degraded key=%s error=%s", object_key, exc)
        return None


def render_narration(
    *,
    speech_synthesizer: SpeechSynthesizer,
    storage: ObjectStorage,
    text: str,
    style_tag: str,
    object_key: str,
) -> str | None:
    """Return a public audio URL, or None when synthesis or upload fails."""
    settings = voice_settings(style_tag)
    try:
        audio = speech_synthesizer.synthesize(text=text, voice=settings.voice, speed=settings.speed)
        return storage.upload(data=audio, content_type=AUDIO_CONTENT_TYPE, key=object_key)
    except ExternalServiceError as exc:
        logger.warning("audio.degraded key=%s error=%s", object_key, exc)
        return None
