"""Shared fixtures for narrate tests."""

import pytest
from pydub import AudioSegment

from narrate.models import Segment

# MPEG-1 Layer III frame header (128 kbps, 44.1 kHz)
MP3_FRAME_HEADER = b"\xff\xfb\x90\x00"


@pytest.fixture
def tiny_mp3(tmp_path):
    """Generate a 100ms silent MP3 for testing."""
    path = tmp_path / "test.mp3"
    silence = AudioSegment.silent(duration=100)
    silence.export(str(path), format="mp3")
    return path


@pytest.fixture
def mp3_payload():
    """Factory for fake MPEG payloads: a frame header followed by a marker."""
    def make(marker: bytes) -> bytes:
        return MP3_FRAME_HEADER + marker
    return make


@pytest.fixture
def sample_segments():
    """Pre-built segments for scheduler/pipeline tests."""
    return [
        Segment(index=0, text="It was dark."),
        Segment(index=1, text="The wind rose over the hill."),
        Segment(index=2, text="Then it rained."),
        Segment(index=3, text="Nobody came."),
        Segment(index=4, text="The end."),
    ]
