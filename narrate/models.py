"""Data models for narration jobs."""

from dataclasses import dataclass, field
from enum import Enum

from narrate.constants import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_QUALITY,
    DEFAULT_SPEED,
    DEFAULT_VOICE,
    OUTPUT_MEDIA_TYPE,
)
from narrate.errors import GenerationError


class SegmentStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"


class Phase(str, Enum):
    PROCESSING = "processing"
    GENERATING = "generating"
    ASSEMBLING = "assembling"


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED_BEFORE_GENERATION = "failed_before_generation"
    CANCELLED = "cancelled"


@dataclass
class Segment:
    index: int
    text: str
    status: SegmentStatus = SegmentStatus.PENDING
    attempts: int = 0
    error: str | None = None


@dataclass
class VoiceParameters:
    voice: str = DEFAULT_VOICE
    quality: str = DEFAULT_QUALITY
    speed: float = DEFAULT_SPEED

    @property
    def rate(self) -> str:
        """Speed as an edge-tts relative rate string: 0.9 → "-10%"."""
        percent = round((self.speed - 1.0) * 100)
        return f"{percent:+d}%"


@dataclass
class Job:
    segments: list[Segment]
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    voice: VoiceParameters = field(default_factory=VoiceParameters)

    def validate(self) -> None:
        """Indices must be exactly 0..N-1 in order and concurrency at least 1."""
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        for position, seg in enumerate(self.segments):
            if seg.index != position:
                raise ValueError(f"segment at position {position} has index {seg.index}")
            if not seg.text.strip():
                raise ValueError(f"segment {seg.index} has empty text")


@dataclass
class GenerationResult:
    segment_index: int
    audio_reference: bytes | str | None = None  # raw bytes, local path or URL
    error: GenerationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.audio_reference is not None


@dataclass
class ProgressSnapshot:
    per_segment: dict[int, float]
    overall: float


@dataclass
class ProgressEvent:
    phase: Phase
    percentage: float                   # within the phase
    overall: float = 0.0                # across the whole job
    snapshot: ProgressSnapshot | None = None


@dataclass
class AudioArtifact:
    data: bytes
    media_type: str = OUTPUT_MEDIA_TYPE
    segment_count: int = 0
    duration_ms: int | None = None


@dataclass
class JobResult:
    status: JobStatus
    total_segments: int = 0
    artifact: AudioArtifact | None = None
    failed_segments: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)
    message: str = ""

    @property
    def succeeded_segments(self) -> int:
        return self.total_segments - len(self.failed_segments)

    @property
    def partially_failed(self) -> bool:
        return self.status == JobStatus.PARTIALLY_FAILED

    def summary(self) -> str:
        if self.status == JobStatus.SUCCEEDED:
            return f"succeeded: {self.total_segments} segments"
        if self.status == JobStatus.PARTIALLY_FAILED:
            return (
                f"partially failed with {self.succeeded_segments} of "
                f"{self.total_segments} segments succeeded"
            )
        if self.status == JobStatus.CANCELLED:
            return "cancelled"
        return f"failed before any generation: {self.message}"
