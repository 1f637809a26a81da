"""Error taxonomy for narration jobs."""


class NarrateError(Exception):
    """Base class for all narration errors."""


class ChunkingError(NarrateError):
    """Input text cannot be segmented within the provider's size bounds."""

    def __init__(self, message: str, index: int | None = None, length: int | None = None):
        super().__init__(message)
        self.index = index
        self.length = length


class GenerationError(NarrateError):
    """The provider rejected, timed out or errored on one segment."""

    def __init__(self, index: int, message: str, retryable: bool = True):
        super().__init__(f"segment {index}: {message}")
        self.index = index
        self.message = message
        self.retryable = retryable


class FetchError(NarrateError):
    """A segment's audio reference could not be retrieved."""

    def __init__(self, index: int, reference: str, message: str):
        super().__init__(f"segment {index}: could not fetch {reference}: {message}")
        self.index = index
        self.reference = reference


class AssemblyError(NarrateError):
    """Segment audio cannot be combined into one artifact."""


class EncodingMismatchError(AssemblyError):
    """Segment payloads do not share one concatenable encoding."""


class AggregateJobError(NarrateError):
    """Too many segments failed for the job to be assembled."""

    def __init__(self, failed: list[int], total: int):
        super().__init__(f"{len(failed)} of {total} segments failed: {failed}")
        self.failed = failed
        self.total = total


class TranscriptError(NarrateError):
    """The transcript source could not produce text."""


class SourceError(NarrateError):
    """The input document cannot be read as text."""
