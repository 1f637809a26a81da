"""Bounded worker pool that drives segment generation.

One Scheduler is built per job and owns its pool. Segments are dispatched in
ascending index order into at most ``max_concurrency`` slots; a slot that
finishes immediately claims the next pending segment. Completion order is
whatever the provider gives us, results are keyed by segment index.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from narrate import progress
from narrate.constants import DEFAULT_MAX_CONCURRENCY, GENERATION_RETRIES, GENERATION_TIMEOUT_S
from narrate.errors import AggregateJobError, GenerationError
from narrate.models import GenerationResult, Job, ProgressSnapshot, Segment, SegmentStatus

logger = logging.getLogger(__name__)

SegmentProgress = Callable[[float], None]
GenerateFn = Callable[[Segment, SegmentProgress], Awaitable[GenerationResult]]
SnapshotCallback = Callable[[ProgressSnapshot], None]


class Scheduler:
    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout: float | None = GENERATION_TIMEOUT_S,
        retries: int = GENERATION_RETRIES,
        on_progress: SnapshotCallback | None = None,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.retries = retries
        self.on_progress = on_progress

        self.active = 0
        self.peak_active = 0
        self._total = 0
        self._progress: dict[int, float] = {}
        self._results: dict[int, GenerationResult] = {}
        self._running: set[asyncio.Task] = set()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def snapshot(self) -> ProgressSnapshot:
        return progress.snapshot(self._progress, self._total)

    def _emit(self) -> None:
        if not self.on_progress:
            return
        try:
            self.on_progress(self.snapshot())
        except Exception:
            logger.warning("on_progress callback failed", exc_info=True)

    def _reporter(self, index: int) -> SegmentProgress:
        def report(percentage: float) -> None:
            # Late reports after the segment settled are ignored
            if index in self._results:
                return
            value = progress.clamp(percentage)
            if value > self._progress.get(index, 0.0):
                self._progress[index] = value
                self._emit()
        return report

    async def _attempt(self, segment: Segment, generate: GenerateFn) -> GenerationResult:
        index = segment.index
        segment.attempts += 1
        try:
            call = generate(segment, self._reporter(index))
            if self.timeout is not None:
                result = await asyncio.wait_for(call, self.timeout)
            else:
                result = await call
        except asyncio.TimeoutError:
            return GenerationResult(index, error=GenerationError(index, f"timed out after {self.timeout}s"))
        except GenerationError as e:
            return GenerationResult(index, error=e)
        except Exception as e:
            logger.exception("Generator raised for segment %d", index)
            return GenerationResult(index, error=GenerationError(index, f"{type(e).__name__}: {e}"))

        if not isinstance(result, GenerationResult):
            return GenerationResult(
                index,
                error=GenerationError(index, f"generator returned {type(result).__name__}, not a GenerationResult", retryable=False),
            )
        if result.segment_index != index:
            return GenerationResult(
                index,
                error=GenerationError(index, f"generator returned result for segment {result.segment_index}", retryable=False),
            )
        if result.error is None and result.audio_reference is None:
            return GenerationResult(index, error=GenerationError(index, "generator returned no audio"))
        return result

    async def _run_segment(self, segment: Segment, generate: GenerateFn) -> None:
        index = segment.index
        segment.status = SegmentStatus.GENERATING
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        logger.debug("Segment %d: generating (%d active)", index, self.active)

        try:
            for attempt in range(self.retries + 1):
                result = await self._attempt(segment, generate)
                if result.ok or not result.error.retryable:
                    break
                if attempt < self.retries:
                    logger.info("Segment %d: retrying after %s", index, result.error.message)
        finally:
            self.active -= 1

        # Retries overwrite: only the last attempt is recorded
        self._results[index] = result
        if result.ok:
            segment.status = SegmentStatus.COMPLETE
            segment.error = None
            logger.debug("Segment %d: complete", index)
        else:
            segment.status = SegmentStatus.FAILED
            segment.error = result.error.message
            logger.warning("Segment %d failed: %s", index, result.error.message)

        # A settled segment, failed or not, has no work left
        self._progress[index] = 100.0
        self._emit()

    def _dispatch(self, pending: deque, generate: GenerateFn) -> None:
        while pending and len(self._running) < self.max_concurrency and not self._cancelled:
            segment = pending.popleft()
            task = asyncio.create_task(self._run_segment(segment, generate), name=f"segment-{segment.index}")
            self._running.add(task)

    def cancel(self) -> None:
        """Stop dispatching and cancel in-flight generations."""
        self._cancelled = True
        for task in self._running:
            task.cancel()

    async def run(self, segments: list[Segment], generate: GenerateFn) -> dict[int, GenerationResult]:
        """Generate every segment; resolves once each one is complete or failed.

        Returns results keyed by segment index in ascending order. Raises
        asyncio.CancelledError if the run is cancelled.
        """
        Job(segments=segments, max_concurrency=self.max_concurrency).validate()
        self._total = len(segments)
        self._progress = {}
        self._results = {}

        for seg in segments:
            seg.status = SegmentStatus.PENDING
        pending = deque(segments)
        logger.info(
            "Generating %d segments with %d slots",
            len(pending), min(self.max_concurrency, len(pending)),
        )
        self._dispatch(pending, generate)

        try:
            while self._running:
                done, self._running = await asyncio.wait(self._running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    task.result()
                self._dispatch(pending, generate)
        except BaseException:
            self.cancel()
            await asyncio.gather(*self._running, return_exceptions=True)
            self._running = set()
            raise

        if self._cancelled:
            raise asyncio.CancelledError()

        return {i: self._results[i] for i in sorted(self._results)}


def failed_indices(results: dict[int, GenerationResult]) -> list[int]:
    return sorted(i for i, r in results.items() if not r.ok)


def check_failure_threshold(results: dict[int, GenerationResult], threshold: float = 0.0) -> None:
    """Raise AggregateJobError when the failed fraction exceeds threshold.

    The default of 0.0 means any failed segment blocks assembly.
    """
    failed = failed_indices(results)
    if not results or not failed:
        return
    if len(failed) / len(results) > threshold:
        raise AggregateJobError(failed, len(results))
