"""Audio timeline recording for ScreenRec.

Loopback capture only produces data while something is playing, and the
driver can stall for hundreds of milliseconds under load. The recorder turns
that irregular block stream into a continuous PCM timeline whose length
follows the wall clock: gaps are filled with block-aligned silence before the
next block is written, and the tail is padded up to the moment stop() was
called.

The PortAudio callback only timestamps and enqueues blocks. A single timeline
thread converts, writes and publishes them, so TimelineState is never touched
concurrently.
"""

import math
import queue
import threading
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

import numpy as np
import soundfile as sf

from screenrec.audio import diagnostics
from screenrec.audio.formats import AudioFormat, AudioFormatConverter
from screenrec.audio.stream_manager import open_loopback_stream
from screenrec.config.config_loader import config
from screenrec.utils.exceptions import ConfigurationError
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

StreamFactory = Callable[
    [Callable[..., None], Callable[[], None]], Tuple[Any, AudioFormat]
]
AudioSubscriber = Callable[[bytes], None]

_BLOCK = "block"
_STOPPED = "stopped"

# Silence is written in slices of at most this many seconds
_SILENCE_SLICE_SECONDS = 1.0


@dataclass
class TimelineState:
    """Position of the written audio relative to the wall clock."""

    start_time: float
    last_sample_time: float
    bytes_per_second: int
    block_align: int
    stop_time: Optional[float] = None
    total_bytes_written: int = 0
    silence_bytes_written: int = 0
    blocks_processed: int = 0

    @property
    def duration(self) -> float:
        """Seconds of audio written so far."""
        return self.total_bytes_written / self.bytes_per_second

    @property
    def silence_seconds(self) -> float:
        return self.silence_bytes_written / self.bytes_per_second

    def aligned_bytes_for(self, seconds: float) -> int:
        """Largest block-aligned byte count not exceeding ``seconds``."""
        if seconds <= 0:
            return 0
        return (
            math.floor(seconds * self.bytes_per_second / self.block_align)
            * self.block_align
        )


class AudioTimelineRecorder:
    """Records system audio as a gap-free, wall-clock aligned PCM timeline."""

    def __init__(
        self,
        device: Optional[int] = None,
        block_size: Optional[int] = None,
        queue_size: Optional[int] = None,
        gap_threshold: Optional[float] = None,
        tail_gap_threshold: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        stop_timeout: Optional[float] = None,
        stream_factory: Optional[StreamFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the recorder.

        Args:
            device: Capture device index, None to auto-detect a loopback source.
            block_size: Frames per capture callback.
            queue_size: Capture blocks buffered ahead of the timeline thread.
            gap_threshold: Seconds of missing audio before silence is inserted.
            tail_gap_threshold: Seconds of missing tail before padding at stop.
            heartbeat_interval: Minimum seconds between heartbeat logs.
            stop_timeout: Bound on waiting for the stream stop notification.
            stream_factory: ``(callback, finished_callback) -> (stream,
                capture_format)``. Defaults to opening the loopback device.
            clock: Monotonic time source.
        """
        self.device = device if device is not None else config.get("audio.device")
        self.block_size = block_size or config.get("audio.block_size", 1024)
        self.queue_size = queue_size or config.get("audio.queue_size", 100)
        self.gap_threshold = (
            gap_threshold
            if gap_threshold is not None
            else config.get("audio.gap_threshold_ms", 100.0) / 1000.0
        )
        self.tail_gap_threshold = (
            tail_gap_threshold
            if tail_gap_threshold is not None
            else config.get("audio.tail_gap_threshold_ms", 20.0) / 1000.0
        )
        self.heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else config.get("audio.heartbeat_interval_seconds", 5.0)
        )
        self.stop_timeout = (
            stop_timeout
            if stop_timeout is not None
            else config.get("audio.stop_timeout_seconds", 3.0)
        )
        self._stream_factory = stream_factory or partial(
            open_loopback_stream, self.device, self.block_size
        )
        self._clock = clock

        self._lock = threading.Lock()
        self._recording = False
        self._stop_requested = threading.Event()
        self._finished = threading.Event()
        self._stop_time: Optional[float] = None

        self._stream: Any = None
        self._converter: Optional[AudioFormatConverter] = None
        self._writer: Optional[sf.SoundFile] = None
        self._queue: "queue.Queue[Tuple[str, float, Any]]" = queue.Queue(
            maxsize=self.queue_size
        )
        self._worker: Optional[threading.Thread] = None
        self._subscriber: Optional[AudioSubscriber] = None

        self._timeline: Optional[TimelineState] = None
        self._target_format: Optional[AudioFormat] = None
        self._output_file: Optional[Path] = None
        self._last_heartbeat = 0.0
        self._dropped_blocks = 0

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def timeline(self) -> Optional[TimelineState]:
        return self._timeline

    @property
    def target_format(self) -> Optional[AudioFormat]:
        return self._target_format

    @property
    def output_file(self) -> Optional[Path]:
        return self._output_file

    @property
    def duration_seconds(self) -> float:
        return self._timeline.duration if self._timeline else 0.0

    def subscribe(self, callback: Optional[AudioSubscriber]) -> None:
        """Set the single consumer of converted PCM blocks (None to clear)."""
        self._subscriber = callback

    def start(
        self,
        target_format: AudioFormat,
        output_file: Optional[Union[str, Path]] = None,
    ) -> None:
        """Start capturing system audio.

        Args:
            target_format: Canonical output format, must be 16-bit PCM.
            output_file: If given, the timeline is also written to this WAV.

        Raises:
            ConfigurationError: Bad target format or no loopback device.
        """
        with self._lock:
            if self._recording:
                logger.warning("🟡 AudioTimelineRecorder.start() called twice, ignoring")
                return

            if target_format.bits_per_sample != 16 or target_format.is_float:
                raise ConfigurationError(
                    f"Target format must be 16-bit PCM, got {target_format.describe()}"
                )

            stream, capture_format = self._stream_factory(
                self._capture_callback, self._finished_callback
            )
            self._stream = stream
            self._converter = AudioFormatConverter(capture_format, target_format)
            self._target_format = target_format
            self._output_file = Path(output_file) if output_file else None

            logger.info(f"🎧 Capture format: {capture_format.describe()}")
            logger.info(f"🎯 Target format: {target_format.describe()}")

            try:
                if self._output_file is not None:
                    self._output_file.parent.mkdir(parents=True, exist_ok=True)
                    self._writer = sf.SoundFile(
                        str(self._output_file),
                        mode="w",
                        samplerate=target_format.sample_rate,
                        channels=target_format.channels,
                        subtype="PCM_16",
                        format="WAV",
                    )
                    logger.info(f"💾 Writing audio to {self._output_file}")

                self._queue = queue.Queue(maxsize=self.queue_size)
                self._stop_requested.clear()
                self._finished.clear()
                self._stop_time = None
                self._dropped_blocks = 0

                now = self._clock()
                self._timeline = TimelineState(
                    start_time=now,
                    last_sample_time=now,
                    bytes_per_second=target_format.bytes_per_second,
                    block_align=target_format.block_align,
                )
                self._last_heartbeat = now

                self._recording = True
                self._worker = threading.Thread(
                    target=self._timeline_worker, name="audio-timeline", daemon=True
                )
                self._worker.start()
                self._stream.start()
            except Exception as e:
                logger.error(f"🛑 Failed to start audio capture: {e}")
                self._recording = False
                self._queue.put((_STOPPED, self._clock(), None))
                self._release_stream()
                self._close_writer()
                raise

            logger.info("🔴 Recording system audio")

    def stop(self) -> None:
        """Stop capturing and pad the timeline up to now.

        Safe to call more than once; later calls return immediately.
        """
        with self._lock:
            if not self._recording or self._stop_requested.is_set():
                return
            self._stop_time = self._clock()
            self._stop_requested.set()
            stream = self._stream

        logger.info("⏹️ Stopping audio capture")
        try:
            stream.stop()
        except Exception as e:
            logger.warning(f"⚠️ Capture stream stop raised: {e}")

        if not self._finished.wait(self.stop_timeout):
            logger.warning(
                f"🟡 No stop notification within {self.stop_timeout:.1f}s, "
                "finalising timeline anyway"
            )
            self._post_stopped()
            self._finished.wait(self.stop_timeout)

        self._release_stream()

    def on_block_arrived(self, raw_block: Any, now: float) -> None:
        """Append one capture block to the timeline.

        Runs on the timeline thread only.

        Args:
            raw_block: Capture block in the source format.
            now: Monotonic time at which the block was delivered.
        """
        timeline = self._timeline

        gap = now - timeline.last_sample_time
        if gap > self.gap_threshold:
            missing_bytes = timeline.aligned_bytes_for(gap)
            if missing_bytes > 0:
                logger.debug(
                    f"🔇 Gap of {gap * 1000:.0f}ms, inserting {missing_bytes} bytes "
                    "of silence"
                )
                self._write_silence(missing_bytes)

        pcm = self._converter.convert(raw_block)
        if pcm:
            self._emit(pcm)

        timeline.blocks_processed += 1

        if now - self._last_heartbeat >= self.heartbeat_interval:
            self._last_heartbeat = now
            diagnostics.log_heartbeat(
                timeline, now, self._queue.qsize(), self._dropped_blocks
            )

    def _capture_callback(
        self, indata: np.ndarray, frames: int, time_info: Any, status: Any
    ) -> None:
        """PortAudio data callback: timestamp and hand off."""
        now = self._clock()

        if status:
            logger.warning(f"Audio callback status: {status}")

        if not self._recording:
            return

        try:
            self._queue.put_nowait((_BLOCK, now, indata.copy()))
        except queue.Full:
            # The gap check covers the lost audio with silence
            self._dropped_blocks += 1
            logger.debug("Capture queue full, dropping block")

    def _finished_callback(self) -> None:
        """PortAudio finished callback, requested or not."""
        self._post_stopped()

    def _post_stopped(self) -> None:
        try:
            self._queue.put((_STOPPED, self._clock(), None), timeout=self.stop_timeout)
        except queue.Full:
            logger.warning("⚠️ Could not queue stop notification, queue is full")

    def _timeline_worker(self) -> None:
        while True:
            kind, timestamp, payload = self._queue.get()

            if kind == _STOPPED:
                if self._recording:
                    self._finalize(timestamp)
                return

            try:
                self.on_block_arrived(payload, timestamp)
            except Exception as e:
                logger.error(f"🛑 Failed to process audio block: {e}")

    def _finalize(self, notified_at: float) -> None:
        timeline = self._timeline
        implicit = not self._stop_requested.is_set()

        if implicit:
            logger.warning(
                "🟡 Capture stream ended without a stop request, treating as stop"
            )
            self._stop_time = notified_at

        try:
            timeline.stop_time = self._stop_time
            tail_gap = timeline.stop_time - timeline.last_sample_time
            if tail_gap > self.tail_gap_threshold:
                tail_bytes = timeline.aligned_bytes_for(tail_gap)
                if tail_bytes > 0:
                    logger.debug(f"🔇 Padding tail with {tail_gap * 1000:.0f}ms silence")
                    self._write_silence(tail_bytes)
        except Exception as e:
            logger.error(f"🛑 Failed to pad audio tail: {e}")
        finally:
            self._close_writer()
            self._recording = False
            diagnostics.log_timeline_summary(timeline)
            if implicit:
                self._stop_requested.set()
                self._release_stream()
            self._finished.set()

    def _write_silence(self, num_bytes: int) -> None:
        timeline = self._timeline
        slice_bytes = max(
            timeline.block_align,
            timeline.aligned_bytes_for(_SILENCE_SLICE_SECONDS),
        )
        remaining = num_bytes
        while remaining > 0:
            chunk = min(slice_bytes, remaining)
            self._emit(bytes(chunk))
            timeline.silence_bytes_written += chunk
            remaining -= chunk

    def _emit(self, pcm: bytes) -> None:
        """Write PCM to the file and the subscriber, then advance the timeline."""
        timeline = self._timeline

        if self._writer is not None:
            self._writer.buffer_write(pcm, dtype="int16")
            self._writer.flush()

        timeline.total_bytes_written += len(pcm)
        timeline.last_sample_time += len(pcm) / timeline.bytes_per_second

        subscriber = self._subscriber
        if subscriber is not None:
            try:
                subscriber(pcm)
            except Exception as e:
                logger.warning(f"⚠️ Audio subscriber raised: {e}")

    def _close_writer(self) -> None:
        if self._writer is None:
            return
        try:
            self._writer.close()
            logger.info(f"✅ Audio file closed: {self._output_file}")
        except Exception as e:
            logger.warning(f"⚠️ Failed to close audio file: {e}")
        finally:
            self._writer = None

    def _release_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            logger.debug(f"Error closing capture stream: {e}")
