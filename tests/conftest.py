"""Shared pytest fixtures for all test types."""

import sys
import time

import numpy as np
import pytest

from screenrec.audio.formats import AudioFormat
from screenrec.audio.recorder import AudioTimelineRecorder
from screenrec.config.validators import (
    AudioPolicy,
    CaptureRect,
    EncoderConfig,
    EncoderSettings,
    ScreenRecConfig,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStream:
    """Stand-in for sounddevice.InputStream."""

    def __init__(self, callback, finished_callback):
        self.callback = callback
        self.finished_callback = finished_callback
        self.started = False
        self.stop_calls = 0
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.stop_calls += 1
        self.finished_callback()

    def close(self):
        self.closed = True

    def push(self, block: np.ndarray) -> None:
        self.callback(block, len(block), None, None)


class SilentStopStream(FakeStream):
    """Stream whose driver never reports the stop."""

    def stop(self):
        self.stop_calls += 1


class RecordingSink:
    """Binary sink remembering every write."""

    def __init__(self):
        self.writes = []
        self.closed = False

    def write(self, data) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def close(self):
        self.closed = True

    @property
    def data(self) -> bytes:
        return b"".join(self.writes)


@pytest.fixture
def fake_clock():
    """Clock starting at zero."""
    return FakeClock()


@pytest.fixture
def cd_format():
    """44.1 kHz 16-bit stereo: 176400 bytes/s, block align 4."""
    return AudioFormat(sample_rate=44100, channels=2)


@pytest.fixture
def make_recorder(fake_clock):
    """Build a recorder bound to a FakeStream.

    Returns a factory ``(capture_format, stream_class=FakeStream, **kwargs)``
    yielding ``(recorder, streams)`` where ``streams`` collects the streams
    the recorder opened.
    """
    recorders = []

    def factory(capture_format, stream_class=FakeStream, **kwargs):
        streams = []

        def stream_factory(callback, finished_callback):
            stream = stream_class(callback, finished_callback)
            streams.append(stream)
            return stream, capture_format

        options = dict(
            device=0,
            block_size=1024,
            queue_size=1000,
            gap_threshold=0.1,
            tail_gap_threshold=0.02,
            heartbeat_interval=5.0,
            stop_timeout=1.0,
        )
        options.update(kwargs)
        recorder = AudioTimelineRecorder(
            stream_factory=stream_factory, clock=fake_clock, **options
        )
        recorders.append(recorder)
        return recorder, streams

    yield factory

    for recorder in recorders:
        recorder.stop()


@pytest.fixture
def app_config(tmp_path):
    """Validated configuration writing into a temp work directory."""
    return ScreenRecConfig(
        session={
            "work_directory": str(tmp_path / "recordings"),
            "settle_delay_seconds": 0.0,
            "audio_flush_delay_seconds": 0.0,
        },
        logging={"to_file": False},
    )


@pytest.fixture
def encoder_config(tmp_path):
    """Encoder configuration for a small region, no audio."""
    return EncoderConfig(
        capture_rect=CaptureRect(x=10, y=20, width=640, height=480),
        output_width=640,
        output_height=480,
        output_path=tmp_path / "out.mp4",
        frame_rate=30,
        audio_policy=AudioPolicy.NONE,
    )


@pytest.fixture
def stub_settings():
    """Encoder settings resolving the Python interpreter as the encoder."""
    return EncoderSettings(
        ffmpeg_path=sys.executable,
        ffprobe_path=None,
        quick_exit_timeout_seconds=1.0,
        finish_timeout_seconds=10.0,
        max_finish_timeout_seconds=20.0,
        merge_timeout_seconds=10.0,
        file_stable_timeout_seconds=2.0,
    )


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until true or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def poll():
    return wait_until


@pytest.fixture
def mp4_bytes() -> bytes:
    """Minimal bytes carrying an MP4 ``ftyp`` header."""
    return b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2" + b"\x00" * 64


@pytest.fixture
def silent_stream_class():
    return SilentStopStream


@pytest.fixture
def recording_sink():
    return RecordingSink()
