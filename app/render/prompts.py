"""
Frame prompt construction.

A job's prompt is split into story beats: the first frame opens the scene,
the last one resolves it, anything in between cycles through the middle
beats. Every frame carries the mood styling and the quality suffix.
"""
from typing import Optional

DEFAULT_MOOD = "ethereal"
DEFAULT_MOOD_STYLE = "Ethereal, mystical atmosphere"

MOOD_STYLES: dict[str, str] = {
    "peaceful": "Serene, calming atmosphere with gentle lighting",
    "anxious": "Tense, unsettling atmosphere with dramatic shadows",
    "joyful": "Vibrant, uplifting atmosphere with warm golden light",
    "mysterious": "Enigmatic, intriguing atmosphere with misty ambiance",
    "dark": "Somber, brooding atmosphere with deep shadows",
    "bright": "Luminous, radiant atmosphere with glowing highlights",
    "calm": "Tranquil, soothing atmosphere with soft pastels",
    "intense": "Powerful, dramatic atmosphere with bold contrasts",
    "hopeful": "Optimistic, inspiring atmosphere with dawn-like glow",
    "fearful": "Ominous, threatening atmosphere with stark lighting",
}

KNOWN_MOODS = frozenset(MOOD_STYLES)

MOOD_DETECTION_PROMPT = """Analyze the emotional mood of this scene description in ONE word.

Description: "{prompt}"

Respond with ONLY ONE of these moods: peaceful, anxious, joyful, mysterious, dark, bright, calm, intense, hopeful, fearful

Return ONLY the single mood word, nothing else."""

OPENING_BEAT = "Opening frame: {prompt}. {style} with soft focus and dreamlike lighting."
MIDDLE_BEATS = (
    "Establishing frame: {prompt}. {style} revealing the wider scene in layered depth.",
    "Turning-point frame: {prompt}. {style} at the height of the moment with heightened motion.",
)
CLOSING_BEAT = "Closing frame: {prompt}. {style} conclusion with flowing transitions and peaceful resolution."

QUALITY_SUFFIX = (
    " Visual Quality: High-resolution cinematic frame, intricate details, professional lighting."
    " Composition: Balanced framing with a clear focal point."
)


def mood_style(mood: Optional[str]) -> str:
    if not mood:
        return DEFAULT_MOOD_STYLE
    return MOOD_STYLES.get(mood.strip().lower(), DEFAULT_MOOD_STYLE)


def normalize_mood(text: Optional[str]) -> str:
    """Reduce a free-text model answer to one known mood word."""
    if not text:
        return DEFAULT_MOOD
    word = text.strip().split()[0].strip(".,!\"'").lower() if text.strip() else ""
    return word if word in KNOWN_MOODS else DEFAULT_MOOD


def build_frame_prompts(prompt: str, mood: Optional[str], count: int) -> list[str]:
    if count <= 0:
        return []

    style = mood_style(mood)
    if count == 1:
        beats = [OPENING_BEAT]
    else:
        beats = [OPENING_BEAT]
        beats.extend(MIDDLE_BEATS[i % len(MIDDLE_BEATS)] for i in range(count - 2))
        beats.append(CLOSING_BEAT)

    return [beat.format(prompt=prompt.strip(), style=style) + QUALITY_SUFFIX for beat in beats]
