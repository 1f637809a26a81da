"""HTTP speech-synthesis provider: submit a conversion, poll until audio is ready.

Provider payloads are normalized here, at the boundary, into
GenerationResult and Voice; nothing past this module sees raw responses.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import requests

from narrate.constants import MAX_POLLS, POLL_INTERVAL_S
from narrate.errors import GenerationError
from narrate.models import GenerationResult, Segment, VoiceParameters

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Client errors that will fail the same way on every retry
_PERMANENT_STATUS = {400, 401, 403, 404, 413, 422}


@dataclass
class Voice:
    id: str
    name: str
    language: str = ""
    gender: str = ""
    accent: str = ""
    sample: str = ""
    is_cloned: bool = False


def normalize_voices(payload) -> list[Voice]:
    """Turn a voice-list response into Voices.

    Accepts a bare list or an object wrapping it under "voices". The id
    falls back to voice_id, then id, then "<name>-<language>".
    """
    if isinstance(payload, dict):
        entries = payload.get("voices") or []
    elif isinstance(payload, list):
        entries = payload
    else:
        raise ValueError(f"unexpected voice list payload: {type(payload).__name__}")

    voices = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name", "")
        language = entry.get("language", "")
        voice_id = entry.get("voice_id") or entry.get("id") or f"{name}-{language}"
        voices.append(Voice(
            id=voice_id,
            name=name,
            language=language,
            gender=entry.get("gender") or "",
            accent=entry.get("accent") or "",
            sample=entry.get("sample") or "",
            is_cloned=bool(entry.get("is_cloned", False)),
        ))
    return voices


class HttpSpeechGenerator:
    """Segment generator for convert-then-poll TTS APIs.

    POST {base_url}/convert starts a conversion and returns either an audio
    URL directly or a transcriptionId; GET {base_url}/articleStatus is then
    polled until it reports the audio URL.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        user_id: str = "",
        poll_interval: float = POLL_INTERVAL_S,
        max_polls: int = MAX_POLLS,
        session: requests.Session | None = None,
    ):
        if not api_key:
            raise ValueError("TTS provider API key is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key if api_key.startswith("Bearer ") else f"Bearer {api_key}"
        self.user_id = user_id
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {"Authorization": self.api_key, "Content-Type": "application/json"}
        if self.user_id:
            headers["X-User-ID"] = self.user_id
        return headers

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self.session.request(method, f"{self.base_url}{path}", headers=self._headers(), timeout=30, **kwargs)
        response.raise_for_status()
        return response.json()

    async def _call(self, index: int, method: str, path: str, **kwargs) -> dict:
        try:
            return await asyncio.to_thread(self._request, method, path, **kwargs)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            detail = _error_detail(e.response) or str(e)
            raise GenerationError(index, f"provider returned {status}: {detail}", retryable=status not in _PERMANENT_STATUS) from e
        except requests.RequestException as e:
            raise GenerationError(index, f"provider request failed: {e}") from e

    async def _poll(self, index: int, job_id: str, on_progress: ProgressCallback | None) -> str:
        for attempt in range(self.max_polls):
            try:
                status = await self._call(index, "GET", "/articleStatus", params={"transcriptionId": job_id})
            except GenerationError as e:
                if not e.retryable:
                    raise
                logger.debug("Segment %d: poll %d failed: %s", index, attempt + 1, e.message)
            else:
                if status.get("error"):
                    raise GenerationError(index, f"provider error: {status['error']}", retryable=False)
                if status.get("converted") and status.get("audioUrl"):
                    return status["audioUrl"]
                if on_progress:
                    reported = status.get("progress")
                    if reported is None:
                        reported = (attempt + 1) * 100.0 / self.max_polls
                    on_progress(min(99.0, float(reported)))
            await asyncio.sleep(self.poll_interval)

        raise GenerationError(index, f"audio not ready after {self.max_polls} polls")

    async def generate(
        self,
        segment: Segment,
        voice: VoiceParameters,
        on_progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        index = segment.index
        body = {
            "content": [segment.text],
            "voice": voice.voice,
            "quality": voice.quality,
            "globalSpeed": str(voice.speed),
            "trimSilence": True,
        }
        try:
            started = await self._call(index, "POST", "/convert", json=body)
            audio_url = started.get("audioUrl")
            if not audio_url:
                job_id = started.get("transcriptionId")
                if not job_id:
                    raise GenerationError(index, "no transcriptionId in convert response", retryable=False)
                logger.debug("Segment %d: conversion %s started", index, job_id)
                audio_url = await self._poll(index, job_id, on_progress)
        except GenerationError as e:
            return GenerationResult(segment_index=index, error=e)

        if on_progress:
            on_progress(100.0)
        return GenerationResult(segment_index=index, audio_reference=audio_url)

    def list_voices(self) -> list[Voice]:
        response = self.session.get(f"{self.base_url}/getVoices", headers=self._headers(), timeout=30)
        response.raise_for_status()
        return normalize_voices(response.json())


def _error_detail(response) -> str:
    if response is None:
        return ""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or payload)
    return str(payload)
