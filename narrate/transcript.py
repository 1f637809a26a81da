"""Transcript sources: turn raw input into narration text.

The language model behind OpenRouterTranscriptSource is an external
collaborator; this module only builds the request and unwraps the reply.
"""

import asyncio
import logging
import os

import requests

from narrate.constants import OPENROUTER_MODEL, OPENROUTER_URL, TRANSCRIPT_MINUTES, WORDS_PER_MINUTE
from narrate.errors import TranscriptError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You write spoken monologues for {audience}.
Turn the given topic into a natural, conversational talk of about {minutes} minutes ({words} words).

- open with a hook, introduce the topic, cover three or four main points with examples, close with a conclusion
- address the listener directly
- no stage directions, sound effects or speaker markers
- write complete sentences with ordinary punctuation so the text can be split at sentence boundaries"""

EXPANSION_PROMPT = """The talk below is too short ({count} words). Expand it to about {words} words
with more examples, deeper explanations and practical applications.

{text}"""


class PassthroughTranscriptSource:
    """Uses the input text as the transcript."""

    async def generate(self, text: str, audience: str = "") -> str:
        return text


class OpenRouterTranscriptSource:
    """Writes a transcript with an OpenRouter chat-completions model.

    A reply shorter than min_words triggers one expansion request.
    """

    def __init__(
        self,
        api_key: str,
        model: str = OPENROUTER_MODEL,
        minutes: int = TRANSCRIPT_MINUTES,
        url: str = OPENROUTER_URL,
        timeout: float = 120.0,
    ):
        if not api_key:
            raise TranscriptError("OpenRouter API key is required (set OPENROUTER_API_KEY)")
        self.api_key = api_key
        self.model = model
        self.minutes = minutes
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_env(cls, **kwargs) -> "OpenRouterTranscriptSource":
        return cls(os.environ.get("OPENROUTER_API_KEY", ""), **kwargs)

    @property
    def target_words(self) -> int:
        return self.minutes * WORDS_PER_MINUTE

    @property
    def min_words(self) -> int:
        # ~90% of target, below which one expansion is requested
        return int(self.target_words * 0.9)

    def _complete(self, system: str, prompt: str) -> str:
        try:
            response = requests.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "X-Title": "narrate",
                },
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    "temperature": 0.7,
                    "max_tokens": 4000,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise TranscriptError(f"OpenRouter request failed: {e}") from e
        except ValueError as e:
            raise TranscriptError(f"OpenRouter returned invalid JSON: {e}") from e

        if payload.get("error"):
            raise TranscriptError(f"OpenRouter error: {payload['error']}")
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise TranscriptError(f"unexpected OpenRouter response shape: {payload}") from e
        if not content or not content.strip():
            raise TranscriptError("OpenRouter returned an empty transcript")
        return content.strip()

    def generate_sync(self, text: str, audience: str = "a general") -> str:
        system = SYSTEM_PROMPT.format(audience=audience, minutes=self.minutes, words=self.target_words)
        transcript = self._complete(system, text)
        count = len(transcript.split())
        logger.info("Transcript draft: %d words", count)

        if count < self.min_words:
            logger.info("Transcript short (%d < %d words), requesting expansion", count, self.min_words)
            prompt = EXPANSION_PROMPT.format(count=count, words=self.target_words, text=transcript)
            transcript = self._complete(system, prompt)
            logger.info("Expanded transcript: %d words", len(transcript.split()))

        return transcript

    async def generate(self, text: str, audience: str = "a general") -> str:
        return await asyncio.to_thread(self.generate_sync, text, audience)
