"""Job orchestration: text → segments → generated audio → one artifact.

run_job() drives the three phases and reports ProgressEvents;
start_job() schedules it as a task and hands back a JobHandle.
"""

import asyncio
import logging
from typing import Callable

from narrate import progress
from narrate.assembly import COMBINING, ENCODING, FETCHING, Assembler
from narrate.chunker import build_segments, validate_chunks
from narrate.constants import (
    DEFAULT_MAX_CONCURRENCY,
    FAILURE_THRESHOLD,
    GENERATION_RETRIES,
    GENERATION_TIMEOUT_S,
    MAX_CHUNK_LENGTH,
    PROVIDER_HARD_LIMIT,
)
from narrate.errors import AggregateJobError, ChunkingError, TranscriptError
from narrate.models import (
    GenerationResult,
    JobResult,
    JobStatus,
    Phase,
    ProgressEvent,
    ProgressSnapshot,
    Segment,
    VoiceParameters,
)
from narrate.scheduler import Scheduler, check_failure_threshold, failed_indices

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

# Share of the assembling phase given to each assembler step: (start, end)
_ASSEMBLY_SPANS = {
    FETCHING: (0.0, 60.0),
    COMBINING: (60.0, 90.0),
    ENCODING: (90.0, 100.0),
}


class _Reporter:
    """Forwards ProgressEvents to a listener and remembers the latest one."""

    def __init__(self, listener: ProgressListener | None = None):
        self.listener = listener
        self.latest: ProgressEvent | None = None

    def __call__(self, phase: Phase, percentage: float, snapshot: ProgressSnapshot | None = None) -> None:
        event = ProgressEvent(
            phase=phase,
            percentage=progress.clamp(percentage),
            overall=progress.phase_progress(phase, percentage),
            snapshot=snapshot,
        )
        self.latest = event
        if self.listener:
            try:
                self.listener(event)
            except Exception:
                logger.warning("on_progress callback failed for phase=%s", phase.value, exc_info=True)

    def assembly(self, step: str, percentage: float) -> None:
        start, end = _ASSEMBLY_SPANS[step]
        self(Phase.ASSEMBLING, start + (end - start) * progress.clamp(percentage) / 100.0)


def _failed_before_generation(message: str) -> JobResult:
    logger.error("Job failed before generation: %s", message)
    return JobResult(status=JobStatus.FAILED_BEFORE_GENERATION, message=message)


async def run_job(
    text: str,
    generator,
    voice: VoiceParameters | None = None,
    *,
    transcript_source=None,
    audience: str = "a general",
    max_length: int = MAX_CHUNK_LENGTH,
    hard_limit: int = PROVIDER_HARD_LIMIT,
    scheduler: Scheduler | None = None,
    assembler: Assembler | None = None,
    failure_threshold: float = FAILURE_THRESHOLD,
    allow_partial: bool = False,
    on_progress: ProgressListener | None = None,
) -> JobResult:
    """Convert text into one narrated artifact.

    generator is any object with
    ``async generate(segment, voice, on_progress) -> GenerationResult``.

    Chunking and transcript failures come back as a failed_before_generation
    result. Segment failures come back as partially_failed with the failed
    indices; the succeeded segments are only assembled when allow_partial is
    set (or the failed fraction is within failure_threshold). Fetch and
    assembly errors propagate.
    """
    voice = voice or VoiceParameters()
    report = on_progress if isinstance(on_progress, _Reporter) else _Reporter(on_progress)

    # Phase 1: transcript and chunking
    report(Phase.PROCESSING, 0.0)
    if transcript_source is not None:
        try:
            text = await transcript_source.generate(text, audience)
        except TranscriptError as e:
            return _failed_before_generation(str(e))

    segments = build_segments(text, max_length)
    if not segments:
        return _failed_before_generation("no text to narrate")
    try:
        validate_chunks([s.text for s in segments], hard_limit, max_length)
    except ChunkingError as e:
        return _failed_before_generation(str(e))
    logger.info("Processed text into %d segments", len(segments))
    report(Phase.PROCESSING, 100.0)

    # Phase 2: bounded-concurrency generation
    scheduler = scheduler or Scheduler()
    scheduler.on_progress = lambda snap: report(Phase.GENERATING, snap.overall, snap)
    report(Phase.GENERATING, 0.0)

    async def generate(segment: Segment, on_segment_progress) -> GenerationResult:
        return await generator.generate(segment, voice, on_segment_progress)

    results = await scheduler.run(segments, generate)
    failed = failed_indices(results)
    errors = {i: results[i].error.message for i in failed}

    to_assemble = results
    if failed:
        try:
            check_failure_threshold(results, failure_threshold)
        except AggregateJobError as e:
            logger.warning("%s", e)
            if not allow_partial or len(failed) == len(results):
                return JobResult(
                    status=JobStatus.PARTIALLY_FAILED,
                    total_segments=len(segments),
                    failed_segments=failed,
                    errors=errors,
                    message=str(e),
                )
        to_assemble = {i: r for i, r in results.items() if r.ok}

    # Phase 3: assembly
    assembler = assembler or Assembler()
    assembler.on_progress = report.assembly
    report(Phase.ASSEMBLING, 0.0)
    artifact = await assembler.assemble(to_assemble, allow_gaps=bool(failed))

    result = JobResult(
        status=JobStatus.PARTIALLY_FAILED if failed else JobStatus.SUCCEEDED,
        total_segments=len(segments),
        artifact=artifact,
        failed_segments=failed,
        errors=errors,
    )
    logger.info("Job %s", result.summary())
    return result


class JobHandle:
    """A running job: progress, cancellation and the eventual JobResult."""

    def __init__(self, task: asyncio.Task, scheduler: Scheduler, reporter: _Reporter):
        self._task = task
        self._scheduler = scheduler
        self._reporter = reporter

    @property
    def progress(self) -> ProgressEvent | None:
        return self._reporter.latest

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Stop dispatching segments and cancel in-flight work."""
        self._scheduler.cancel()
        self._task.cancel()

    async def result(self) -> JobResult:
        try:
            return await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return JobResult(status=JobStatus.CANCELLED, message="job was cancelled")


def start_job(
    text: str,
    generator,
    voice: VoiceParameters | None = None,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    timeout: float | None = GENERATION_TIMEOUT_S,
    retries: int = GENERATION_RETRIES,
    on_progress: ProgressListener | None = None,
    **kwargs,
) -> JobHandle:
    """Schedule run_job on the running event loop and return its handle.

    Extra keyword arguments go to run_job.
    """
    scheduler = Scheduler(max_concurrency=max_concurrency, timeout=timeout, retries=retries)
    reporter = _Reporter(on_progress)
    task = asyncio.create_task(
        run_job(text, generator, voice, scheduler=scheduler, on_progress=reporter, **kwargs),
        name="narrate-job",
    )
    return JobHandle(task, scheduler, reporter)
