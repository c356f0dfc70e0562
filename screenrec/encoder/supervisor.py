"""FFmpeg process supervision for screen recording.

The supervisor owns exactly one encoder process and, under the ``live_pipe``
audio policy, the FIFO feeding it raw PCM. Shutdown always follows the same
order: audio EOF, then the ``q`` graceful-stop character on stdin, then a
bounded wait with a forced kill as fallback, then the optional merge.
"""

import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from screenrec.config.config_loader import config
from screenrec.config.validators import AudioPolicy, EncoderConfig, EncoderSettings
from screenrec.encoder.arguments import (
    build_encoder_args,
    estimate_file_size_per_minute,
    expected_video_mbps,
    resolve_executable,
)
from screenrec.encoder.merge import VideoAudioMerger
from screenrec.encoder.pipe import PipeChannel, fifo_supported
from screenrec.utils.exceptions import (
    ConfigurationError,
    MergeFailed,
    ProcessStartError,
    ScreenRecError,
    TimeoutExceeded,
    TransientIOError,
)
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

ArgBuilder = Callable[[EncoderConfig, str, Optional[str]], List[str]]

GRACEFUL_STOP = b"q\n"


class EncoderState(Enum):
    IDLE = "idle"
    CONFIGURED = "configured"
    RUNNING = "running"
    STOP_REQUESTED = "stop_requested"
    DRAINING = "draining"
    EXITED_CLEAN = "exited_clean"
    EXITED_FAILED = "exited_failed"
    EXITED_KILLED = "exited_killed"
    DISPOSED = "disposed"


EXITED_STATES = (
    EncoderState.EXITED_CLEAN,
    EncoderState.EXITED_FAILED,
    EncoderState.EXITED_KILLED,
)


@dataclass
class FinishResult:
    """Outcome of one encoder run."""

    state: EncoderState
    output_path: Path
    exit_code: Optional[int] = None
    merged: bool = False
    merge_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == EncoderState.EXITED_CLEAN


class EncoderProcessSupervisor:
    """Drives one FFmpeg screen recording through a fixed state machine."""

    def __init__(
        self,
        encoder_config: EncoderConfig,
        settings: Optional[EncoderSettings] = None,
        arg_builder: ArgBuilder = build_encoder_args,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the supervisor.

        Args:
            encoder_config: Immutable description of the recording.
            settings: Executable paths and timeouts, from config if None.
            arg_builder: Builds the command line from the configuration.
            clock: Monotonic time source for size-based finish bounds.
        """
        self.config = encoder_config
        self.settings = settings or EncoderSettings(**(config.get("encoder") or {}))
        self._arg_builder = arg_builder
        self._clock = clock

        self._lock = threading.RLock()
        self._state = EncoderState.IDLE
        self._ffmpeg_path: Optional[str] = None
        self._process: Optional[subprocess.Popen] = None
        self._pipe: Optional[PipeChannel] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_tail: deque = deque(maxlen=20)
        self._audio_file: Optional[Path] = None
        self._result: Optional[FinishResult] = None
        self._started_at: Optional[float] = None
        self._dropped_writes = 0
        self._write_error_logged = False
        self.command: List[str] = []

    @property
    def state(self) -> EncoderState:
        return self._state

    @property
    def output_path(self) -> Path:
        return self.config.output_path

    @property
    def audio_file(self) -> Optional[Path]:
        return self._audio_file

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pipe_connected(self) -> bool:
        return self._pipe is not None and self._pipe.connected

    @property
    def pipe(self) -> Optional[PipeChannel]:
        return self._pipe

    def configure(self) -> None:
        """Resolve the encoder executable and check the audio policy.

        Raises:
            ConfigurationError: Missing FFmpeg or unsupported policy.
        """
        with self._lock:
            if self._state != EncoderState.IDLE:
                raise ScreenRecError(f"Cannot configure encoder in state {self._state.value}")

            self._ffmpeg_path = resolve_executable(self.settings.ffmpeg_path, "ffmpeg")
            if self.config.audio_policy == AudioPolicy.LIVE_PIPE and not fifo_supported():
                raise ConfigurationError(
                    "live_pipe audio needs POSIX named pipes, use file_merge instead"
                )

            self._state = EncoderState.CONFIGURED
            logger.debug(
                f"Encoder configured: {self._ffmpeg_path}, "
                f"audio policy {self.config.audio_policy.value}"
            )

    def start(self) -> None:
        """Spawn the encoder process.

        Raises:
            ConfigurationError: If configuration fails.
            ProcessStartError: If the process cannot be spawned.
        """
        with self._lock:
            if self._state == EncoderState.IDLE:
                self.configure()
            if self._state != EncoderState.CONFIGURED:
                raise ScreenRecError(f"Cannot start encoder in state {self._state.value}")

            audio_input = None
            if self.config.audio_policy == AudioPolicy.LIVE_PIPE:
                self._pipe = PipeChannel(
                    self.config.audio_block_align,
                    write_timeout=self.settings.pipe_write_timeout_seconds,
                )
                audio_input = str(self._pipe.path)

            self.command = self._arg_builder(self.config, self._ffmpeg_path, audio_input)
            logger.debug(f"FFmpeg command: {' '.join(self.command)}")

            self.config.output_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                self._process = subprocess.Popen(
                    self.command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                if self._pipe is not None:
                    self._pipe.cleanup()
                    self._pipe = None
                raise ProcessStartError(f"Failed to start encoder: {e}") from e

            self._started_at = self._clock()
            self._state = EncoderState.RUNNING

            self._stderr_thread = threading.Thread(
                target=self._drain_stderr,
                args=(self._process,),
                name="encoder-stderr",
                daemon=True,
            )
            self._stderr_thread.start()

            if self._pipe is not None:
                self._pipe.start_connect()

            logger.info(
                f"🎬 Encoder started (PID {self._process.pid}) -> {self.config.output_path}"
            )

    def write_audio_data(self, data: bytes) -> None:
        """Forward PCM to the encoder, dropping it when nobody is listening.

        The pipe write happens outside the supervisor lock so a stalled
        reader never blocks request_stop() or finish().
        """
        with self._lock:
            pipe = self._pipe
            state = self._state
            if (
                state not in (EncoderState.RUNNING, EncoderState.STOP_REQUESTED)
                or pipe is None
                or not pipe.connected
            ):
                self._dropped_writes += 1
                if self._dropped_writes == 1 and state == EncoderState.RUNNING:
                    logger.debug("Audio pipe not connected yet, dropping audio")
                return

        try:
            pipe.write(data)
        except TransientIOError as e:
            with self._lock:
                first = not self._write_error_logged
                self._write_error_logged = True
                running = self._state == EncoderState.RUNNING
            if first and running:
                logger.warning(f"⚠️ {e}, continuing without live audio")
            elif first:
                logger.debug(f"Audio write after stop: {e}")

    def request_stop(self) -> None:
        """Close the audio pipe, then ask FFmpeg to stop. Idempotent."""
        with self._lock:
            if self._state != EncoderState.RUNNING:
                return
            self._state = EncoderState.STOP_REQUESTED
            pipe = self._pipe
            stdin = self._process.stdin

        if pipe is not None:
            pipe.flush_and_close()

        logger.info("⏹️ Sending graceful stop to encoder")
        try:
            stdin.write(GRACEFUL_STOP)
            stdin.flush()
        except (OSError, ValueError) as e:
            logger.debug(f"Encoder stdin unavailable: {e}")

    def set_audio_file(self, audio_file: Optional[Path]) -> None:
        """Audio intermediate merged by finish() under ``file_merge``."""
        with self._lock:
            self._audio_file = Path(audio_file) if audio_file else None
        logger.debug(f"Merge audio source: {self._audio_file}")

    def finish(self, quick_exit: bool = False) -> FinishResult:
        """Wait for the encoder to exit, killing it on timeout.

        Args:
            quick_exit: Use the short bound and skip the merge.

        Returns:
            FinishResult, the same object on repeated calls.
        """
        with self._lock:
            if self._result is not None:
                return self._result
            if self._process is None:
                self._result = FinishResult(
                    state=self._state, output_path=self.config.output_path
                )
                return self._result

        self.request_stop()

        with self._lock:
            self._state = EncoderState.DRAINING
            process = self._process

        timeout = (
            self.settings.quick_exit_timeout_seconds
            if quick_exit
            else self.finish_timeout()
        )
        exit_code = self._wait_or_kill(process, timeout)

        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1.0)

        with self._lock:
            if exit_code is None:
                self._state = EncoderState.EXITED_KILLED
            elif exit_code == 0:
                self._state = EncoderState.EXITED_CLEAN
            else:
                self._state = EncoderState.EXITED_FAILED
                logger.error(f"🛑 Encoder exited with code {exit_code}")
                for line in self._stderr_tail:
                    logger.error(f"FFmpeg: {line}")

            result = FinishResult(
                state=self._state,
                output_path=self.config.output_path,
                exit_code=process.returncode,
            )

        if self.config.audio_policy == AudioPolicy.FILE_MERGE and not quick_exit:
            self._merge(result)

        with self._lock:
            self._result = result
        logger.info(f"🏁 Encoder finished: {result.state.value}")
        return result

    def finish_timeout(self) -> float:
        """Long finish bound, scaled by the expected output size."""
        elapsed = 0.0
        if self._started_at is not None:
            elapsed = max(0.0, self._clock() - self._started_at)

        audio_kbps = (
            self.config.audio_bitrate_kbps
            if self.config.audio_policy != AudioPolicy.NONE
            else 0
        )
        expected_mb = (
            estimate_file_size_per_minute(expected_video_mbps(self.config), audio_kbps)
            * elapsed
            / 60.0
        )
        timeout = (
            self.settings.finish_timeout_seconds
            + expected_mb * self.settings.finish_seconds_per_mb
        )
        return min(timeout, self.settings.max_finish_timeout_seconds)

    def dispose(self) -> None:
        """Release the process and pipe. Idempotent."""
        with self._lock:
            if self._state == EncoderState.DISPOSED:
                return
            process = self._process
            pipe, self._pipe = self._pipe, None
            self._state = EncoderState.DISPOSED

        if process is not None and process.poll() is None:
            logger.warning("🟡 Encoder still running at dispose, killing it")
            self._kill(process)

        if process is not None:
            for stream in (process.stdin, process.stderr):
                if stream is None:
                    continue
                try:
                    stream.close()
                except OSError as e:
                    logger.debug(f"Error closing encoder stream: {e}")

        if pipe is not None:
            pipe.cleanup()

        logger.debug("🧹 Encoder supervisor disposed")

    def _wait_or_kill(self, process: subprocess.Popen, timeout: float) -> Optional[int]:
        try:
            return process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            error = TimeoutExceeded("encoder stop", timeout)
            logger.error(f"🛑 {error}, killing encoder")
            self._kill(process)
            return None

    def _kill(self, process: subprocess.Popen) -> None:
        try:
            process.kill()
            process.wait(timeout=self.settings.quick_exit_timeout_seconds)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"⚠️ Failed to kill encoder PID {process.pid}: {e}")

    def _drain_stderr(self, process: subprocess.Popen) -> None:
        stderr = process.stderr
        if stderr is None:
            return
        try:
            for raw_line in iter(stderr.readline, b""):
                line = raw_line.decode(errors="replace").strip()
                if not line:
                    continue
                self._stderr_tail.append(line)
                lowered = line.lower()
                if "error" in lowered or "failed" in lowered:
                    logger.error(f"FFmpeg: {line}")
                else:
                    logger.debug(f"FFmpeg: {line}")
        except (OSError, ValueError) as e:
            logger.debug(f"Stderr drain ended: {e}")

    def _merge(self, result: FinishResult) -> None:
        if result.state == EncoderState.EXITED_FAILED:
            result.merge_error = "encoder failed, merge skipped"
            logger.warning("🟡 Skipping audio merge after encoder failure")
            return

        try:
            ffprobe_path = resolve_executable(self.settings.ffprobe_path, "ffprobe")
        except ConfigurationError as e:
            logger.debug(f"{e}, validating by signature only")
            ffprobe_path = None

        merger = VideoAudioMerger(
            ffmpeg_path=self._ffmpeg_path,
            ffprobe_path=ffprobe_path,
            audio_bitrate_kbps=self.config.audio_bitrate_kbps,
            merge_timeout=self.settings.merge_timeout_seconds,
            stable_timeout=self.settings.file_stable_timeout_seconds,
        )
        try:
            result.merged = merger.merge(self.config.output_path, self._audio_file)
        except MergeFailed as e:
            result.merge_error = str(e)
            logger.error(f"🛑 Audio merge failed, keeping video-only file: {e}")
