"""Prompt templates, style presets and narration voices."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from story_tree.core.context_chain import render_story_so_far
from story_tree.core.ending_policy import EndingDecision, pacing_instruction
from story_tree.domain.models import ContextEntry, StoryBible


@dataclass(frozen=True)
class StylePreset:
    style: str
    color_palette: str
    line_work: str
    influences: tuple[str, ...]
    lighting: str
    mood: str

    def prompt_prefix(self) -> str:
        return (
            f"A {self.style} panel. {self.color_palette}. {self.line_work}. "
            f"{self.lighting}. Style of {self.influences[0]}."
        )


@dataclass(frozen=True)
class VoiceSettings:
    voice: str
    speed: float


DEFAULT_STYLE_TAG: Final[str] = "noir"

STYLE_PRESETS: Final[dict[str, StylePreset]] = {
    "noir": StylePreset(
        style="noir graphic novel",
        color_palette="high contrast black and white with selective red accents",
        line_work="heavy ink shadows, dramatic silhouettes",
        influences=("Frank Miller", "Sin City", "Mike Mignola"),
        lighting="harsh chiaroscuro, venetian blind shadows",
        mood="gritty, atmospheric, morally ambiguous",
    ),
    "manga": StylePreset(
        style="seinen manga",
        color_palette="clean blacks and whites with screentone shading",
        line_work="precise lineart, dynamic speed lines",
        influences=("Takehiko Inoue", "Naoki Urasawa", "Kentaro Miura"),
        lighting="dramatic with high contrast action scenes",
        mood="intense, emotional, detailed",
    ),
    "western": StylePreset(
        style="modern American comic",
        color_palette="rich, saturated colors with dramatic shadows",
        line_work="bold outlines, detailed crosshatching",
        influences=("Alex Ross", "Jim Lee", "David Finch"),
        lighting="cinematic, dynamic rim lighting",
        mood="heroic, epic, intense",
    ),
    "cyberpunk": StylePreset(
        style="cyberpunk graphic novel",
        color_palette="neon pinks, blues, and purples against dark backgrounds",
        line_work="sharp geometric lines, digital aesthetic",
        influences=("Masamune Shirow", "Josan Gonzalez", "Blade Runner"),
        lighting="neon glow, holographic reflections",
        mood="dystopian, tech-noir, atmospheric",
    ),
    "horror": StylePreset(
        style="horror comic",
        color_palette="desaturated with sickly greens and blood reds",
        line_work="scratchy, unsettling linework",
        influences=("Junji Ito", "Bernie Wrightson", "Emily Carroll"),
        lighting="oppressive shadows, unnatural light sources",
        mood="dread, unease, visceral",
    ),
    "fantasy": StylePreset(
        style="dark fantasy graphic novel",
        color_palette="earthy tones with magical color accents",
        line_work="detailed, painterly quality",
        influences=("Frazetta", "Moebius", "Yoshitaka Amano"),
        lighting="mystical, ethereal glow effects",
        mood="epic, mysterious, otherworldly",
    ),
}

VOICE_SETTINGS: Final[dict[str, VoiceSettings]] = {
    "noir": VoiceSettings(voice="onyx", speed=0.85),
    "manga": VoiceSettings(voice="nova", speed=0.95),
    "western": VoiceSettings(voice="echo", speed=0.9),
    "cyberpunk": VoiceSettings(voice="fable", speed=0.95),
    "horror": VoiceSettings(voice="onyx", speed=0.8),
    "fantasy": VoiceSettings(voice="shimmer", speed=0.9),
}

AUDIENCE_LABELS: Final[dict[str, str]] = {
    "adult": "Mature adults (18+)",
    "young_adult": "Young adults (16+)",
    "children": "Children (5-10)",
}

BIBLE_TEMPERATURE: Final[float] = 0.7
BIBLE_MAX_TOKENS: Final[int] = 2500
CHAPTER_TEMPERATURE: Final[float] = 0.75
CHAPTER_MAX_TOKENS: Final[int] = 1200

BIBLE_SYSTEM_PROMPT: Final[str] = """You are an expert comic book writer and art director creating a story bible for a branching graphic novel.

Your story bibles are known for:
1. MEMORABLE CHARACTERS with distinct visual identities and complex motivations
2. RICH WORLD-BUILDING that feels lived-in and consistent
3. VISUAL CLARITY - every character description can be drawn consistently
4. BRANCHING NARRATIVES with meaningful, consequential choices

CRITICAL RULES:
- Character appearances must be SPECIFIC and CONSISTENT (exact details for image generation)
- Define a single art style that will be used for ALL panels
- Plan 3-5 distinct endings
- Each character needs a unique visual identifier (scar, clothing, hairstyle, etc.)

You MUST respond with valid JSON only. No explanations outside the JSON."""

CHAPTER_SYSTEM_PROMPT: Final[str] = """You are writing chapters for a branching graphic novel. Your writing is CINEMATIC and VISUAL.

CRITICAL RULES:
1. Stay STRICTLY consistent with the story bible - characters look and act as defined
2. Each chapter MUST logically follow from previous events
3. Write what we SEE and HEAR - this is a visual medium
4. End non-ending chapters with 2-3 MEANINGFUL choices
5. Choices must have REAL consequences, not just flavor text
6. Keep chapters 250-400 words - tight pacing like a comic
7. Include a detailed panelDescription for the KEY visual moment
8. Follow the PACING instruction exactly

You MUST respond with valid JSON only."""


def style_preset(style_tag: str) -> StylePreset:
    return STYLE_PRESETS.get(style_tag.strip().lower(), STYLE_PRESETS[DEFAULT_STYLE_TAG])


def voice_settings(style_tag: str) -> VoiceSettings:
    return VOICE_SETTINGS.get(style_tag.strip().lower(), VOICE_SETTINGS[DEFAULT_STYLE_TAG])


def build_bible_user_prompt(*, premise: str, style_tag: str, audience: str, tone: str) -> str:
    preset = style_preset(style_tag)
    audience_label = AUDIENCE_LABELS.get(audience, AUDIENCE_LABELS["adult"])
    template = {
        "characters": [
            {
                "name": "Character Name",
                "role": "protagonist|antagonist|supporting|minor",
                "appearance": "DETAILED physical description for image consistency",
                "personality": "Core traits, mannerisms, speech patterns",
                "background": "Brief but relevant backstory",
                "arc": "How this character changes through the story",
            }
        ],
        "setting": {
            "world": "Description of the world/reality",
            "timePeriod": "When this takes place",
            "locations": [{"name": "", "description": "", "atmosphere": ""}],
            "atmosphere": "Overall world atmosphere",
        },
        "artStyle": {
            "style": preset.style,
            "colorPalette": preset.color_palette,
            "lineWork": preset.line_work,
            "influences": list(preset.influences),
            "lighting": preset.lighting,
            "mood": preset.mood,
        },
        "narrative": {
            "genre": "Specific genre",
            "tone": tone,
            "themes": ["theme1", "theme2", "theme3"],
            "plotOutline": "2-3 sentence plot summary",
            "possibleEndings": [{"type": "good|bad|neutral|bittersweet", "description": ""}],
        },
        "stylePromptPrefix": preset.prompt_prefix(),
        "characterPromptMap": {"Character Name": "Exact visual description for image prompts"},
    }
    return (
        "Create a story bible for this graphic novel concept:\n\n"
        f'"{premise}"\n\n'
        "REQUIREMENTS:\n"
        f"- Style: {style_tag.upper()} comic ({preset.style})\n"
        f"- Tone: {tone}\n"
        f"- Audience: {audience_label}\n"
        f"- Visual influences: {', '.join(preset.influences)}\n\n"
        "OUTPUT THIS EXACT JSON STRUCTURE:\n"
        f"{json.dumps(template, indent=2)}\n\n"
        "Create 2-4 compelling characters. Make the story ORIGINAL and ENGAGING."
    )


def build_chapter_user_prompt(
    *,
    bible: StoryBible,
    context_chain: Sequence[ContextEntry],
    selected_choice: str | None,
    decision: EndingDecision,
) -> str:
    character_reference = "\n".join(
        f"- {character.name} ({character.role}): {character.appearance[:100]}"
        for character in bible.characters
    )
    opening = not context_chain
    task = (
        "Write the OPENING chapter. Hook the reader immediately. Introduce the protagonist "
        "and central conflict."
        if opening
        else "Write the NEXT chapter. Build on previous events. Escalate tension or reveal "
        "new information."
    )
    lines = [
        "STORY BIBLE SUMMARY:",
        f"Genre: {bible.narrative.genre}",
        f"Tone: {bible.narrative.tone}",
        f"Setting: {bible.setting.world}",
        f"Themes: {', '.join(bible.narrative.themes)}",
        "",
        "CHARACTERS:",
        character_reference,
        "",
        "STORY SO FAR:",
        render_story_so_far(context_chain),
        "",
    ]
    if selected_choice:
        lines.extend([f'THE READER CHOSE: "{selected_choice}"', ""])
    lines.extend(
        [
            f"PACING: {pacing_instruction(decision)}",
            "",
            task,
            "",
            "OUTPUT THIS EXACT JSON:",
            json.dumps(
                {
                    "title": "Chapter Title",
                    "content": "The narrative text. 250-400 words.",
                    "panelDescription": "Key visual moment: characters, poses, environment, "
                    "lighting, mood. 2-3 sentences.",
                    "chapterSummary": "One sentence summary of key events.",
                    "charactersPresent": ["Character names who appear"],
                    "isEnding": False,
                    "endingType": None,
                    "choices": [
                        {
                            "text": "Choice text the reader sees",
                            "consequenceHint": "Subtle hint about where this leads",
                            "emotionalWeight": "hope|fear|anger|determination|despair|curiosity",
                        }
                    ],
                },
                indent=2,
            ),
            "",
            'For endings, set isEnding: true, endingType: "good|bad|neutral|bittersweet", '
            "and choices: [].",
        ]
    )
    return "\n".join(lines)
