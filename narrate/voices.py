"""Voice pool, voice sidecar files and voice lookup."""

import json
import logging
import os

import edge_tts

from narrate.constants import DEFAULT_QUALITY, DEFAULT_SPEED, DEFAULT_VOICE
from narrate.models import VoiceParameters
from narrate.provider import Voice

logger = logging.getLogger(__name__)

# Hardcoded English voice pool (avoids network call at startup)
VOICE_POOL = [
    "en-US-AriaNeural",
    "en-US-DavisNeural",
    "en-US-GuyNeural",
    "en-US-JennyNeural",
    "en-US-RogerNeural",
    "en-US-SaraNeural",
    "en-US-TonyNeural",
    "en-GB-RyanNeural",
    "en-GB-SoniaNeural",
    "en-GB-ThomasNeural",
    "en-AU-NatashaNeural",
    "en-AU-WilliamNeural",
    "en-CA-ClaraNeural",
    "en-CA-LiamNeural",
    "en-IN-NeerjaNeural",
    "en-IN-PrabhatNeural",
    "en-IE-EmilyNeural",
]


def load_voice_config(text_path: str) -> VoiceParameters:
    """Load a .voice.json sidecar next to the input text if it exists.

    Missing or malformed sidecars fall back to the defaults.
    """
    base = os.path.splitext(text_path)[0]
    sidecar = base + ".voice.json"
    if not os.path.exists(sidecar):
        return VoiceParameters()
    try:
        with open(sidecar) as f:
            data = json.load(f)
    except json.JSONDecodeError:
        logger.warning("Malformed voice file: %s, using defaults", sidecar)
        return VoiceParameters()

    return VoiceParameters(
        voice=resolve_voice(data.get("voice", DEFAULT_VOICE)),
        quality=data.get("quality", DEFAULT_QUALITY),
        speed=float(data.get("speed", DEFAULT_SPEED)),
    )


def resolve_voice(name: str, pool: list[str] | None = None) -> str:
    """Match a voice name case-insensitively against the pool.

    Unknown names are passed through: the provider has the final say.
    """
    pool = VOICE_POOL if pool is None else pool
    for voice in pool:
        if voice.lower() == name.lower():
            return voice
    logger.info("Voice %s is not in the local pool; passing it through", name)
    return name


def filter_voices(voices: list[str], substring: str | None) -> list[str]:
    if not substring:
        return list(voices)
    needle = substring.lower()
    return [v for v in voices if needle in v.lower()]


def normalize_edge_voices(entries: list[dict]) -> list[Voice]:
    """Turn edge-tts voice dicts into Voices."""
    return [
        Voice(
            id=entry["ShortName"],
            name=entry.get("FriendlyName", entry["ShortName"]),
            language=entry.get("Locale", ""),
            gender=entry.get("Gender", ""),
        )
        for entry in entries
        if entry.get("ShortName")
    ]


async def list_edge_voices() -> list[Voice]:
    """Full voice list from the edge-tts service (network call)."""
    return normalize_edge_voices(await edge_tts.list_voices())
