"""TTS generation via edge-tts with retry logic."""

import asyncio
import logging
import os
import time
from typing import Callable

import edge_tts

from narrate.constants import TTS_RETRY_COUNT, TTS_RETRY_BASE_DELAY
from narrate.errors import GenerationError
from narrate.models import GenerationResult, Segment, VoiceParameters

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_BOUNDARY_TYPES = ("WordBoundary", "SentenceBoundary")


def synthesize_to_file(text: str, voice: str, output_path: str, rate: str = "+0%") -> None:
    """Generate a single TTS clip with retry logic.

    Sync wrapper around edge_tts.Communicate(). Retries on network errors,
    HTTP errors, or 0-byte output files. Rate is a relative string like "-10%".
    """
    last_error = None
    for attempt in range(TTS_RETRY_COUNT):
        try:
            communicate = edge_tts.Communicate(text, voice, rate=rate)
            asyncio.run(communicate.save(output_path))

            if os.path.exists(output_path) and os.path.getsize(output_path) > 0:
                return

            last_error = Exception(f"TTS produced 0-byte file for: {text[:50]}...")
        except Exception as e:
            last_error = e

        if attempt < TTS_RETRY_COUNT - 1:
            time.sleep(TTS_RETRY_BASE_DELAY * (2 ** attempt))

    raise last_error


class EdgeTTSGenerator:
    """Segment generator backed by edge-tts.

    Audio comes back as raw MP3 bytes in GenerationResult.audio_reference.
    Progress is estimated from the boundary events edge-tts emits while
    streaming: characters of the segment spoken so far over its length.
    """

    def __init__(self, retries: int = TTS_RETRY_COUNT, base_delay: float = TTS_RETRY_BASE_DELAY):
        self.retries = retries
        self.base_delay = base_delay

    async def _stream(self, segment: Segment, voice: VoiceParameters, on_progress: ProgressCallback | None) -> bytes:
        communicate = edge_tts.Communicate(segment.text, voice.voice, rate=voice.rate)
        audio = bytearray()
        cursor = 0
        total = len(segment.text)

        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                audio.extend(chunk["data"])
            elif chunk["type"] in _BOUNDARY_TYPES and on_progress:
                spoken = chunk.get("text", "")
                found = segment.text.find(spoken, cursor)
                if found >= 0:
                    cursor = found + len(spoken)
                    # 100 is reserved for the completed result
                    on_progress(min(99.0, cursor * 100.0 / total))

        return bytes(audio)

    async def generate(
        self,
        segment: Segment,
        voice: VoiceParameters,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """Synthesize one segment. Provider failures come back in result.error."""
        last_error = None
        for attempt in range(self.retries):
            try:
                audio = await self._stream(segment, voice, on_progress)
                if audio:
                    if on_progress:
                        on_progress(100.0)
                    return GenerationResult(segment_index=segment.index, audio_reference=audio)
                last_error = f"TTS produced no audio for: {segment.text[:50]}..."
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                "Segment %d attempt %d/%d failed: %s",
                segment.index, attempt + 1, self.retries, last_error,
            )
            if attempt < self.retries - 1:
                await asyncio.sleep(self.base_delay * (2 ** attempt))

        return GenerationResult(
            segment_index=segment.index,
            error=GenerationError(segment.index, last_error or "no attempts made"),
        )
