"""Assemble per-segment audio into one artifact.

Segments are joined as raw encoded byte streams in ascending index order, no
decoding or re-encoding. That only yields a playable file when every segment
shares one frame-based encoding, so payloads are sniffed first and anything
else is refused.
"""

import asyncio
import io
import logging
from typing import Awaitable, Callable, Iterable
from urllib.parse import urlparse

import requests
from pydub import AudioSegment

from narrate.constants import FETCH_TIMEOUT_S, OUTPUT_MEDIA_TYPE
from narrate.errors import AssemblyError, EncodingMismatchError, FetchError
from narrate.models import AudioArtifact, GenerationResult

logger = logging.getLogger(__name__)

AssemblyProgress = Callable[[str, float], None]
FetchFn = Callable[[bytes | str], Awaitable[bytes]]

FETCHING = "fetching"
COMBINING = "combining"
ENCODING = "encoding"

# Containers whose header describes the whole file; naive concatenation of
# two of them does not produce one valid file.
_NON_CONCATENABLE = {"audio/wav", "audio/flac"}

_PYDUB_FORMATS = {
    "audio/mpeg": "mp3",
    "audio/aac": "aac",
    "audio/ogg": "ogg",
}


def sniff_encoding(data: bytes) -> str | None:
    """Best-effort media type from leading magic bytes. None if unrecognized."""
    if data.startswith(b"ID3"):
        return "audio/mpeg"
    if data.startswith(b"RIFF") and data[8:12] == b"WAVE":
        return "audio/wav"
    if data.startswith(b"OggS"):
        return "audio/ogg"
    if data.startswith(b"fLaC"):
        return "audio/flac"
    if len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        # Layer bits 00 mean ADTS (AAC), anything else is an MPEG audio layer
        return "audio/mpeg" if data[1] & 0x06 else "audio/aac"
    return None


def strip_id3v2(data: bytes) -> bytes:
    """Drop a leading ID3v2 tag so the payload starts at the first frame."""
    if not data.startswith(b"ID3") or len(data) < 10:
        return data
    size = (data[6] & 0x7F) << 21 | (data[7] & 0x7F) << 14 | (data[8] & 0x7F) << 7 | (data[9] & 0x7F)
    end = 10 + size
    if data[5] & 0x10:  # footer present
        end += 10
    return data[end:]


def _describe(reference: bytes | str) -> str:
    if isinstance(reference, (bytes, bytearray)):
        return f"<{len(reference)} bytes>"
    return reference


def _read_reference(reference: str, timeout: float) -> bytes:
    parsed = urlparse(reference)
    if parsed.scheme in ("http", "https"):
        response = requests.get(reference, timeout=timeout)
        response.raise_for_status()
        return response.content
    path = parsed.path if parsed.scheme == "file" else reference
    with open(path, "rb") as f:
        return f.read()


async def fetch_reference(reference: bytes | str, timeout: float = FETCH_TIMEOUT_S) -> bytes:
    """Resolve an audio reference (bytes, URL or local path) to raw bytes."""
    if isinstance(reference, (bytes, bytearray)):
        return bytes(reference)
    return await asyncio.to_thread(_read_reference, reference, timeout)


def check_encodings(payloads: list[bytes]) -> str | None:
    """Verify all payloads share one concatenable encoding.

    Returns that encoding, or None when no payload was recognized. Once any
    payload is recognized, an unrecognized one is a mismatch.
    """
    found = {}
    unrecognized = []
    for position, data in enumerate(payloads):
        encoding = sniff_encoding(data)
        if encoding is None:
            unrecognized.append(position)
        else:
            found.setdefault(encoding, position)

    if len(found) > 1:
        detail = ", ".join(f"{enc} (first at position {pos})" for enc, pos in found.items())
        raise EncodingMismatchError(f"segments use different encodings: {detail}")
    if not found:
        return None

    encoding = next(iter(found))
    if unrecognized:
        raise EncodingMismatchError(f"payloads at positions {unrecognized} are not {encoding} audio")
    if encoding in _NON_CONCATENABLE and len(payloads) > 1:
        raise EncodingMismatchError(f"{encoding} segments cannot be joined by concatenation")
    return encoding


class Assembler:
    """Fetch, combine and wrap segment audio.

    on_progress receives (phase, percentage) with phase one of "fetching",
    "combining" or "encoding".
    """

    def __init__(
        self,
        on_progress: AssemblyProgress | None = None,
        fetch: FetchFn | None = None,
        media_type: str = OUTPUT_MEDIA_TYPE,
        verify: bool = False,
        timeout: float = FETCH_TIMEOUT_S,
    ):
        self.on_progress = on_progress
        self.fetch = fetch
        self.media_type = media_type
        self.verify = verify
        self.timeout = timeout

    def _report(self, phase: str, percentage: float) -> None:
        if self.on_progress:
            try:
                self.on_progress(phase, percentage)
            except Exception:
                logger.warning("on_progress callback failed for phase=%s", phase, exc_info=True)

    async def _fetch_one(self, result: GenerationResult) -> bytes:
        reference = result.audio_reference
        try:
            if self.fetch is not None:
                return await self.fetch(reference)
            return await fetch_reference(reference, self.timeout)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(result.segment_index, _describe(reference), str(e)) from e

    async def _fetch_all(self, ordered: list[GenerationResult]) -> list[bytes]:
        total = len(ordered)
        completed = 0
        self._report(FETCHING, 0.0)

        async def fetch_and_count(result: GenerationResult) -> bytes:
            nonlocal completed
            data = await self._fetch_one(result)
            completed += 1
            self._report(FETCHING, completed * 100.0 / total)
            return data

        tasks = [asyncio.create_task(fetch_and_count(r)) for r in ordered]
        try:
            # gather keeps input order, whatever order the downloads finish in
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    def _combine(self, payloads: list[bytes], encoding: str | None) -> bytes:
        self._report(COMBINING, 0.0)
        combined = bytearray()
        for position, data in enumerate(payloads):
            if position > 0 and encoding == "audio/mpeg":
                data = strip_id3v2(data)
            combined.extend(data)
            self._report(COMBINING, (position + 1) * 100.0 / len(payloads))
        return bytes(combined)

    async def _measure_duration(self, data: bytes, media_type: str) -> int:
        fmt = _PYDUB_FORMATS.get(media_type)
        try:
            audio = await asyncio.to_thread(AudioSegment.from_file, io.BytesIO(data), format=fmt)
        except Exception as e:
            raise AssemblyError(f"combined audio could not be decoded: {e}") from e
        return len(audio)

    async def assemble(
        self,
        results: Iterable[GenerationResult] | dict[int, GenerationResult],
        allow_gaps: bool = False,
    ) -> AudioArtifact:
        """Combine segment results into one artifact, ordered by segment index.

        Every result must be successful. Unless allow_gaps is set, indices must
        cover 0..N-1 exactly; a missing slice would corrupt playback.
        """
        if isinstance(results, dict):
            results = results.values()
        ordered = sorted(results, key=lambda r: r.segment_index)
        if not ordered:
            raise AssemblyError("no segments to assemble")

        indices = [r.segment_index for r in ordered]
        if len(set(indices)) != len(indices):
            raise AssemblyError(f"duplicate segment indices: {indices}")
        if not allow_gaps and indices != list(range(len(indices))):
            missing = sorted(set(range(indices[-1] + 1)) - set(indices))
            raise AssemblyError(f"missing segments: {missing}")
        failed = [r.segment_index for r in ordered if not r.ok]
        if failed:
            raise AssemblyError(f"cannot assemble failed segments: {failed}")

        payloads = await self._fetch_all(ordered)
        encoding = check_encodings(payloads)
        combined = self._combine(payloads, encoding)

        self._report(ENCODING, 0.0)
        media_type = encoding or self.media_type
        artifact = AudioArtifact(data=combined, media_type=media_type, segment_count=len(ordered))
        if self.verify:
            artifact.duration_ms = await self._measure_duration(combined, media_type)
            logger.info("Combined audio duration: %.1fs", artifact.duration_ms / 1000)
        self._report(ENCODING, 100.0)

        logger.info(
            "Combined %d segments into %d bytes (%s)",
            len(ordered), len(combined), media_type,
        )
        logger.debug("Segment sizes: %s", [len(p) for p in payloads])
        return artifact
