"""Tests for TTS module."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from narrate.errors import GenerationError
from narrate.models import Segment, VoiceParameters
from narrate.tts import EdgeTTSGenerator, synthesize_to_file

FAKE_MP3 = b"\xff\xfb\x90\x00" + b"\x00" * 32


def _make_mock_communicate(events=None):
    """Create a mock edge_tts.Communicate that streams audio and word boundaries."""
    def factory(text, voice, **kwargs):
        mock = MagicMock()

        async def stream():
            for word in text.split():
                yield {"type": "audio", "data": FAKE_MP3}
                yield {"type": "WordBoundary", "offset": 0, "duration": 0, "text": word.strip(".,")}
            for event in events or []:
                yield event

        async def save(path):
            with open(path, "wb") as f:
                f.write(FAKE_MP3)

        mock.stream = stream
        mock.save = save
        return mock
    return factory


def _failing_communicate(text, voice, **kwargs):
    mock = MagicMock()

    async def stream():
        raise ConnectionError("Network error")
        yield  # pragma: no cover

    mock.stream = stream
    return mock


# --- Segment generator ---

@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_returns_audio(mock_comm):
    """Streamed audio chunks are joined into the result bytes."""
    mock_comm.side_effect = _make_mock_communicate()
    segment = Segment(index=4, text="Hello big world.")
    result = asyncio.run(EdgeTTSGenerator().generate(segment, VoiceParameters()))
    assert result.ok
    assert result.segment_index == 4
    assert result.audio_reference == FAKE_MP3 * 3


@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_passes_voice_and_rate(mock_comm):
    mock_comm.side_effect = _make_mock_communicate()
    voice = VoiceParameters(voice="en-GB-RyanNeural", speed=0.9)
    asyncio.run(EdgeTTSGenerator().generate(Segment(index=0, text="Hi."), voice))
    args, kwargs = mock_comm.call_args
    assert args == ("Hi.", "en-GB-RyanNeural")
    assert kwargs["rate"] == "-10%"


@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_progress_from_boundaries(mock_comm):
    """Progress rises with the spoken text and ends at 100."""
    mock_comm.side_effect = _make_mock_communicate()
    reported = []
    segment = Segment(index=0, text="Hello big world.")
    asyncio.run(EdgeTTSGenerator().generate(segment, VoiceParameters(), reported.append))
    assert reported == sorted(reported)
    assert all(p < 100 for p in reported[:-1])
    assert reported[-1] == 100.0
    assert len(reported) == 4


@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_ignores_unknown_boundary_text(mock_comm):
    mock_comm.side_effect = _make_mock_communicate(events=[{"type": "WordBoundary", "text": "zzz"}])
    reported = []
    asyncio.run(EdgeTTSGenerator().generate(Segment(index=0, text="Hi."), VoiceParameters(), reported.append))
    assert reported[-1] == 100.0


@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_failure_returned_not_raised(mock_comm):
    """Exhausted retries come back as a GenerationError in the result."""
    mock_comm.side_effect = _failing_communicate
    generator = EdgeTTSGenerator(retries=2, base_delay=0)
    result = asyncio.run(generator.generate(Segment(index=3, text="Hi."), VoiceParameters()))
    assert not result.ok
    assert isinstance(result.error, GenerationError)
    assert result.error.index == 3
    assert "Network error" in result.error.message
    assert mock_comm.call_count == 2


@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_retry_then_success(mock_comm):
    ok = _make_mock_communicate()
    calls = []

    def fail_then_succeed(text, voice, **kwargs):
        calls.append(text)
        if len(calls) == 1:
            return _failing_communicate(text, voice)
        return ok(text, voice)

    mock_comm.side_effect = fail_then_succeed
    result = asyncio.run(EdgeTTSGenerator(retries=3, base_delay=0).generate(Segment(index=0, text="Hi."), VoiceParameters()))
    assert result.ok
    assert len(calls) == 2


@patch("narrate.tts.edge_tts.Communicate")
def test_edge_generator_empty_audio(mock_comm):
    def silent(text, voice, **kwargs):
        mock = MagicMock()

        async def stream():
            yield {"type": "WordBoundary", "text": "Hi"}

        mock.stream = stream
        return mock

    mock_comm.side_effect = silent
    result = asyncio.run(EdgeTTSGenerator(retries=1).generate(Segment(index=0, text="Hi."), VoiceParameters()))
    assert "no audio" in result.error.message


# --- Single-clip helper ---

@patch("narrate.tts.edge_tts.Communicate")
def test_synthesize_to_file(mock_comm, tmp_path):
    """Single clip created at specified path."""
    output = tmp_path / "sample.mp3"
    mock_comm.side_effect = _make_mock_communicate()
    synthesize_to_file("Hello world", "en-US-GuyNeural", str(output))
    assert output.exists()
    assert output.stat().st_size > 0


@patch("narrate.tts.time.sleep")
@patch("narrate.tts.edge_tts.Communicate")
def test_synthesize_to_file_retry(mock_comm, mock_sleep, tmp_path):
    """Retry works when first attempt fails."""
    output = tmp_path / "sample.mp3"
    call_count = 0
    ok = _make_mock_communicate()

    def fail_then_succeed(text, voice, **kwargs):
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            mock = MagicMock()

            async def fail_save(path):
                raise Exception("Network error")

            mock.save = fail_save
            return mock
        return ok(text, voice)

    mock_comm.side_effect = fail_then_succeed
    synthesize_to_file("Hello", "en-US-GuyNeural", str(output))
    assert output.exists()
    assert call_count == 2
    mock_sleep.assert_called_once()


@patch("narrate.tts.time.sleep")
@patch("narrate.tts.edge_tts.Communicate")
def test_synthesize_to_file_retry_exhausted(mock_comm, mock_sleep, tmp_path):
    """Raises after all retries exhausted."""
    def empty_save(text, voice, **kwargs):
        mock = MagicMock()

        async def save(path):
            open(path, "wb").close()

        mock.save = save
        return mock

    mock_comm.side_effect = empty_save
    with pytest.raises(Exception, match="0-byte"):
        synthesize_to_file("Hello", "en-US-GuyNeural", str(tmp_path / "sample.mp3"))
    assert mock_comm.call_count == 3
