"""Tests for pipeline module."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from narrate.assembly import Assembler
from narrate.errors import FetchError, GenerationError, TranscriptError
from narrate.models import GenerationResult, JobStatus, Phase
from narrate.pipeline import run_job, start_job
from narrate.scheduler import Scheduler

# max_length=10 splits this into 4 segments, one sentence each
TEXT = "One fish. Two fish. Red fish. Blue fish."


class FakeGenerator:
    """Returns <index> as audio bytes; fails the given indices."""

    def __init__(self, fail=(), delay=0.01):
        self.fail = set(fail)
        self.delay = delay
        self.calls = []

    async def generate(self, segment, voice, on_progress=None):
        self.calls.append(segment.index)
        if on_progress:
            on_progress(50.0)
        await asyncio.sleep(self.delay)
        if segment.index in self.fail:
            return GenerationResult(segment.index, error=GenerationError(segment.index, "provider rejected"))
        return GenerationResult(segment.index, audio_reference=f"<{segment.index}>".encode())


class FakeTranscriptSource:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error

    async def generate(self, text, audience=""):
        if self.error:
            raise self.error
        return self.text


# --- Outcomes ---

def test_run_job_success():
    """All segments generated and assembled in order."""
    result = asyncio.run(run_job(TEXT, FakeGenerator(), max_length=10))
    assert result.status == JobStatus.SUCCEEDED
    assert result.total_segments == 4
    assert result.artifact.data == b"<0><1><2><3>"
    assert result.failed_segments == []


def test_run_job_one_failure_does_not_assemble():
    """1 of 4 failing: partially failed, failed index reported, no assembly."""
    assembler = Assembler()
    assembler.assemble = AsyncMock()
    result = asyncio.run(run_job(TEXT, FakeGenerator(fail={2}), max_length=10, assembler=assembler))
    assert result.status == JobStatus.PARTIALLY_FAILED
    assert result.partially_failed
    assert result.failed_segments == [2]
    assert result.errors == {2: "provider rejected"}
    assert result.artifact is None
    assembler.assemble.assert_not_called()
    assert result.summary() == "partially failed with 3 of 4 segments succeeded"


def test_run_job_partial_output_opt_in():
    """allow_partial assembles the segments that succeeded."""
    result = asyncio.run(run_job(TEXT, FakeGenerator(fail={2}), max_length=10, allow_partial=True))
    assert result.status == JobStatus.PARTIALLY_FAILED
    assert result.failed_segments == [2]
    assert result.artifact.data == b"<0><1><3>"
    assert result.artifact.segment_count == 3


def test_run_job_failure_threshold():
    """A tolerated failure fraction assembles without allow_partial."""
    result = asyncio.run(run_job(TEXT, FakeGenerator(fail={0}), max_length=10, failure_threshold=0.25))
    assert result.artifact.data == b"<1><2><3>"


def test_run_job_all_failed_never_assembles():
    result = asyncio.run(run_job(TEXT, FakeGenerator(fail={0, 1, 2, 3}), max_length=10, allow_partial=True))
    assert result.artifact is None
    assert result.failed_segments == [0, 1, 2, 3]


def test_run_job_empty_text():
    generator = FakeGenerator()
    result = asyncio.run(run_job("   ", generator))
    assert result.status == JobStatus.FAILED_BEFORE_GENERATION
    assert generator.calls == []


def test_run_job_chunk_over_hard_limit():
    """An unsplittable chunk fails the job before any generation."""
    generator = FakeGenerator()
    result = asyncio.run(run_job("x" * 60 + ".", generator, max_length=10, hard_limit=50))
    assert result.status == JobStatus.FAILED_BEFORE_GENERATION
    assert "provider limit" in result.message
    assert generator.calls == []


def test_run_job_uses_transcript_source():
    source = FakeTranscriptSource(text="A talk. About fish.")
    result = asyncio.run(run_job("fish", FakeGenerator(), max_length=10, transcript_source=source))
    assert result.total_segments == 2


def test_run_job_transcript_failure():
    source = FakeTranscriptSource(error=TranscriptError("model unavailable"))
    result = asyncio.run(run_job("fish", FakeGenerator(), transcript_source=source))
    assert result.status == JobStatus.FAILED_BEFORE_GENERATION
    assert result.message == "model unavailable"


def test_run_job_fetch_error_propagates(tmp_path):
    """Fetch failures surface to the caller with the segment index."""
    class PathGenerator(FakeGenerator):
        async def generate(self, segment, voice, on_progress=None):
            return GenerationResult(segment.index, audio_reference=str(tmp_path / f"{segment.index}.mp3"))

    for index in (1, 2, 3):
        (tmp_path / f"{index}.mp3").write_bytes(b"audio")
    with pytest.raises(FetchError) as exc_info:
        asyncio.run(run_job(TEXT, PathGenerator(), max_length=10))
    assert exc_info.value.index == 0


def test_run_job_respects_scheduler_concurrency():
    scheduler = Scheduler(max_concurrency=2)
    asyncio.run(run_job(TEXT, FakeGenerator(), max_length=10, scheduler=scheduler))
    assert scheduler.peak_active == 2


# --- Progress ---

def test_run_job_progress_events():
    """Phases arrive in order and overall progress never decreases."""
    events = []
    asyncio.run(run_job(TEXT, FakeGenerator(), max_length=10, on_progress=events.append))
    phases = [e.phase for e in events]
    assert phases[0] == Phase.PROCESSING
    assert phases.index(Phase.GENERATING) < phases.index(Phase.ASSEMBLING)
    assert phases[-1] == Phase.ASSEMBLING
    overall = [e.overall for e in events]
    assert overall == sorted(overall)
    assert overall[-1] == 100.0
    generating = [e for e in events if e.phase == Phase.GENERATING and e.snapshot]
    assert generating[-1].snapshot.per_segment == {0: 100.0, 1: 100.0, 2: 100.0, 3: 100.0}


def test_run_job_progress_listener_errors_are_ignored():
    def broken(event):
        raise RuntimeError("listener crashed")

    result = asyncio.run(run_job(TEXT, FakeGenerator(), max_length=10, on_progress=broken))
    assert result.status == JobStatus.SUCCEEDED


# --- Job handle ---

def test_start_job_result():
    async def scenario():
        handle = start_job(TEXT, FakeGenerator(), max_length=10, max_concurrency=2)
        result = await handle.result()
        return handle, result

    handle, result = asyncio.run(scenario())
    assert result.status == JobStatus.SUCCEEDED
    assert handle.done
    assert handle.progress.overall == 100.0


def test_start_job_cancel():
    """Cancelling a running job stops generation and reports cancelled."""
    generator = FakeGenerator(delay=10)

    async def scenario():
        handle = start_job(TEXT, generator, max_length=10, max_concurrency=2)
        await asyncio.sleep(0.05)
        handle.cancel()
        return await handle.result()

    result = asyncio.run(scenario())
    assert result.status == JobStatus.CANCELLED
    assert generator.calls == [0, 1]
