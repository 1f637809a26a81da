"""Split transcript text into speech-synthesizer-sized segments."""

import logging
import math
import re

from narrate.constants import MAX_CHUNK_LENGTH, PROVIDER_HARD_LIMIT, WORDS_PER_MINUTE
from narrate.errors import ChunkingError
from narrate.models import Segment

logger = logging.getLogger(__name__)

# Sentence ends at terminal punctuation (optionally followed by a closing
# quote or bracket) and the whitespace after it.
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+|(?<=[.!?][\"')\]])\s+")

# Clause boundary inside an oversized sentence: comma followed by whitespace
_CLAUSE_BOUNDARY_RE = re.compile(r"(?<=,)\s+")


def clean_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and strip the edges."""
    return re.sub(r"\s+", " ", text).strip()


def split_sentences(text: str) -> list[str]:
    """Split normalized text at sentence boundaries.

    Text without any boundary comes back as a single sentence.
    """
    if not text:
        return []
    return [s for s in _SENTENCE_BOUNDARY_RE.split(text) if s]


def _join(buffer: str, piece: str) -> str:
    return f"{buffer} {piece}" if buffer else piece


def _fits(buffer: str, piece: str, max_length: int) -> bool:
    return not buffer or len(buffer) + 1 + len(piece) <= max_length


def _split_long_sentence(sentence: str, max_length: int) -> tuple[list[str], str]:
    """Pack comma-delimited clauses into sub-buffers bounded by max_length.

    Returns (full sub-buffers, leftover partial). A clause with no comma
    inside it that is still too long is passed through whole.
    """
    clauses = _CLAUSE_BOUNDARY_RE.split(sentence)
    emitted = []
    current = ""
    for clause in clauses:
        if _fits(current, clause, max_length):
            current = _join(current, clause)
        else:
            emitted.append(current)
            current = clause
    return emitted, current


def chunk(text: str, max_length: int = MAX_CHUNK_LENGTH) -> list[str]:
    """Split text into ordered chunks of at most max_length characters.

    Sentences are packed greedily. A sentence longer than max_length is split
    at commas; a comma-free oversized sentence becomes one oversized chunk
    rather than being truncated.
    """
    if max_length < 1:
        raise ValueError(f"max_length must be >= 1, got {max_length}")

    chunks = []
    buffer = ""

    for sentence in split_sentences(clean_text(text)):
        if not _fits(buffer, sentence, max_length):
            chunks.append(buffer)
            buffer = ""

        if len(sentence) > max_length:
            emitted, leftover = _split_long_sentence(sentence, max_length)
            chunks.extend(emitted)
            buffer = leftover
        else:
            buffer = _join(buffer, sentence)

    if buffer:
        chunks.append(buffer)

    return chunks


def build_segments(text: str, max_length: int = MAX_CHUNK_LENGTH) -> list[Segment]:
    """Chunk text and wrap each chunk in an indexed Segment."""
    return [Segment(index=i, text=c) for i, c in enumerate(chunk(text, max_length))]


def validate_chunks(
    chunks: list[str],
    hard_limit: int = PROVIDER_HARD_LIMIT,
    max_length: int = MAX_CHUNK_LENGTH,
) -> None:
    """Raise ChunkingError if any chunk is over the provider's hard limit.

    Chunks over max_length but within the hard limit only log a warning.
    """
    for i, text in enumerate(chunks):
        if len(text) > hard_limit:
            raise ChunkingError(
                f"chunk {i} is {len(text)} characters with no comma or sentence "
                f"boundary to split at (provider limit is {hard_limit})",
                index=i,
                length=len(text),
            )
        if len(text) > max_length:
            logger.warning(
                "Chunk %d is oversized (%d > %d chars) but within provider limit",
                i, len(text), max_length,
            )


def estimate_duration_minutes(text: str) -> int:
    """Rough narration length at WORDS_PER_MINUTE, rounded up."""
    words = clean_text(text).split()
    return math.ceil(len(words) / WORDS_PER_MINUTE)
