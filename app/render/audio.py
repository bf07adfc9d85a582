from typing import Any

# Royalty-free tracks; the URL is attached to the job, players overlay it.
BACKGROUND_MUSIC_LIBRARY: dict[str, str] = {
    "dreamy": "https://cdn.pixabay.com/download/audio/2022/03/15/audio_d1718ab41b.mp3",
    "mystical": "https://cdn.pixabay.com/download/audio/2022/05/27/audio_1808fbf07a.mp3",
    "peaceful": "https://cdn.pixabay.com/download/audio/2021/08/04/audio_0625c1539c.mp3",
    "ethereal": "https://cdn.pixabay.com/download/audio/2022/01/18/audio_d9e33da79e.mp3",
    "cinematic": "https://cdn.pixabay.com/download/audio/2022/03/22/audio_b112cfc9e7.mp3",
}

# First matching rule wins
KEYWORD_RULES: list[tuple[tuple[str, ...], str]] = [
    (("nightmare", "fear", "dark", "scary"), "mystical"),
    (("peaceful", "calm", "serene", "meditation"), "peaceful"),
    (("flying", "adventure", "epic", "dramatic"), "cinematic"),
    (("surreal", "strange", "magical", "mystical"), "ethereal"),
]

DEFAULT_MUSIC_MOOD = "dreamy"
DEFAULT_VOLUME = 0.3
DEFAULT_FADE_SECONDS = 0.5


def select_music_mood(prompt: str) -> str:
    text = prompt.lower()
    for keywords, mood in KEYWORD_RULES:
        if any(k in text for k in keywords):
            return mood
    return DEFAULT_MUSIC_MOOD


def build_audio_track(prompt: str, duration_seconds: int) -> dict[str, Any]:
    mood = select_music_mood(prompt)
    return {
        "mood": mood,
        "url": BACKGROUND_MUSIC_LIBRARY[mood],
        "volume": DEFAULT_VOLUME,
        "fade_in": DEFAULT_FADE_SECONDS,
        "fade_out": DEFAULT_FADE_SECONDS,
        "duration_seconds": duration_seconds,
    }
