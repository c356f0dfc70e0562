"""Recording session orchestration.

A session owns one AudioTimelineRecorder and one EncoderProcessSupervisor and
applies the start/stop ordering that keeps their durations aligned. Audio
always starts first because its timeline defines the session's time origin.
"""

import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from screenrec.audio.formats import AudioFormat
from screenrec.audio.recorder import AudioTimelineRecorder
from screenrec.config.config_loader import config
from screenrec.config.validators import (
    AudioPolicy,
    CaptureRect,
    EncoderConfig,
    ScreenRecConfig,
)
from screenrec.encoder.arguments import (
    default_capture_backend,
    even,
    scaled_output_size,
    video_bitrate_mbps,
)
from screenrec.encoder.supervisor import EncoderProcessSupervisor, FinishResult
from screenrec.utils.exceptions import ScreenRecError
from screenrec.utils.file_manager import FileManager
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

RecorderFactory = Callable[[], AudioTimelineRecorder]
SupervisorFactory = Callable[[EncoderConfig], EncoderProcessSupervisor]


def timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def recorder_from_config(app_config: ScreenRecConfig) -> AudioTimelineRecorder:
    """Audio recorder configured from the ``audio`` section."""
    audio = app_config.audio
    return AudioTimelineRecorder(
        device=audio.device,
        block_size=audio.block_size,
        queue_size=audio.queue_size,
        gap_threshold=audio.gap_threshold_ms / 1000.0,
        tail_gap_threshold=audio.tail_gap_threshold_ms / 1000.0,
        heartbeat_interval=audio.heartbeat_interval_seconds,
        stop_timeout=audio.stop_timeout_seconds,
    )


def build_encoder_config(
    app_config: ScreenRecConfig,
    output_path: Path,
    policy: Optional[AudioPolicy] = None,
) -> EncoderConfig:
    """Derive the immutable encoder description from application config.

    Capture and output sizes are forced even; the output size follows
    ``video.resolution_scale``.
    """
    video = app_config.video
    region = video.region

    capture_width, capture_height = even(region.width), even(region.height)
    output_width, output_height = scaled_output_size(
        capture_width, capture_height, video.resolution_scale
    )

    video_bitrate_kbps = None
    if video.bitrate is not None:
        mbps = video_bitrate_mbps(video.bitrate, output_width, output_height)
        video_bitrate_kbps = int(mbps * 1000)

    backend = video.capture_backend
    if backend == "auto":
        backend = default_capture_backend()

    return EncoderConfig(
        capture_rect=CaptureRect(
            x=region.left, y=region.top, width=capture_width, height=capture_height
        ),
        output_width=output_width,
        output_height=output_height,
        output_path=Path(output_path),
        frame_rate=video.frame_rate,
        crf=video.crf if video_bitrate_kbps is None else None,
        video_bitrate_kbps=video_bitrate_kbps,
        preset=video.preset,
        audio_policy=policy or app_config.encoder.audio_policy,
        audio_sample_rate=app_config.audio.sample_rate,
        audio_channels=app_config.audio.channels,
        audio_bitrate_kbps=video.audio_bitrate,
        capture_backend=backend,
        display=video.display,
    )


class RecordingSession:
    """Screen plus system audio recording with ordered start and stop."""

    def __init__(
        self,
        app_config: Optional[ScreenRecConfig] = None,
        output_path: Optional[Union[str, Path]] = None,
        policy: Optional[AudioPolicy] = None,
        recorder_factory: Optional[RecorderFactory] = None,
        supervisor_factory: Optional[SupervisorFactory] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the session.

        Args:
            app_config: Validated configuration, loaded from config.yml if None.
            output_path: Final video path, timestamped in the work dir if None.
            policy: Audio policy override.
            recorder_factory: Creates the audio recorder.
            supervisor_factory: Creates the encoder supervisor.
            sleep: Sleep function for settle delays.
        """
        self.app_config = app_config or config.validate()
        self.settings = self.app_config.session
        self.file_manager = FileManager(self.settings.work_directory)
        self.work_directory = self.file_manager.base_directory
        self.policy = policy or self.app_config.encoder.audio_policy

        if output_path is None:
            output_path = self.work_directory / f"recording_{timestamp()}.mp4"
        self.encoder_config = build_encoder_config(
            self.app_config, Path(output_path), self.policy
        )

        self._recorder_factory = recorder_factory or (
            lambda: recorder_from_config(self.app_config)
        )
        self._supervisor_factory = supervisor_factory or (
            lambda encoder_config: EncoderProcessSupervisor(
                encoder_config, settings=self.app_config.encoder
            )
        )
        self._sleep = sleep

        self.recorder: Optional[AudioTimelineRecorder] = None
        self.supervisor: Optional[EncoderProcessSupervisor] = None
        self.audio_file: Optional[Path] = None
        self._stop_future: Optional["Future[FinishResult]"] = None
        self._result: Optional[FinishResult] = None
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._result is None

    @property
    def target_format(self) -> AudioFormat:
        return AudioFormat(
            sample_rate=self.app_config.audio.sample_rate,
            channels=self.app_config.audio.channels,
        )

    def start(self) -> None:
        """Start audio, wait the settle delay, then start the encoder.

        Raises:
            ConfigurationError: Missing FFmpeg, loopback device or FIFO support.
            ProcessStartError: The encoder could not be spawned.
        """
        if self._started:
            raise ScreenRecError("Recording session already started")

        logger.info(
            f"🎥 Starting recording: {self.encoder_config.capture_rect.width}x"
            f"{self.encoder_config.capture_rect.height} -> "
            f"{self.encoder_config.output_width}x{self.encoder_config.output_height} "
            f"@ {self.encoder_config.frame_rate}fps, audio {self.policy.value}"
        )

        self.supervisor = self._supervisor_factory(self.encoder_config)
        self.supervisor.configure()

        if self.policy != AudioPolicy.NONE:
            self.recorder = self._recorder_factory()
            if self.policy == AudioPolicy.LIVE_PIPE:
                self.recorder.subscribe(self.supervisor.write_audio_data)
                self.recorder.start(self.target_format)
            else:
                self.audio_file = self.work_directory / f"temp_audio_{timestamp()}.wav"
                self.recorder.start(self.target_format, self.audio_file)

            self._sleep(self.settings.settle_delay_seconds)

        try:
            self.supervisor.start()
        except Exception:
            if self.recorder is not None:
                self.recorder.stop()
            self.supervisor.dispose()
            raise

        self._started = True
        logger.info("🔴 Recording started")

    def stop(self) -> FinishResult:
        """Stop in policy order and wait for the final artifact."""
        if self._result is not None:
            return self._result
        if not self._started:
            raise ScreenRecError("Recording session was not started")

        logger.info("⏹️ Stopping recording")
        try:
            if self.policy == AudioPolicy.LIVE_PIPE:
                self.supervisor.request_stop()
                self.recorder.stop()
            elif self.policy == AudioPolicy.FILE_MERGE:
                self.recorder.stop()
                self._sleep(self.settings.audio_flush_delay_seconds)
                self._hand_over_audio_file()
            else:
                self.supervisor.request_stop()

            self._result = self.supervisor.finish()
        finally:
            self.supervisor.dispose()

        self._log_result(self._result)
        return self._result

    def stop_in_background(self) -> "Future[FinishResult]":
        """Run stop() on a worker thread; repeated calls share one future."""
        if self._stop_future is None:
            executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="session-stop"
            )
            self._stop_future = executor.submit(self.stop)
            executor.shutdown(wait=False)
        return self._stop_future

    def abort(self) -> FinishResult:
        """Urgent teardown: short encoder bound, no merge."""
        if self._result is not None:
            return self._result

        logger.warning("🟡 Aborting recording")
        try:
            if self.supervisor is not None:
                self._result = self.supervisor.finish(quick_exit=True)
        finally:
            if self.recorder is not None:
                self.recorder.stop()
            if self.supervisor is not None:
                self.supervisor.dispose()

        if self._result is None:
            raise ScreenRecError("Recording session was not started")
        return self._result

    def _hand_over_audio_file(self) -> None:
        latest = self.file_manager.find_latest(self.settings.temp_audio_pattern)
        if latest is None:
            logger.warning("🟡 No temporary audio file found, video will be silent")
            return
        if FileManager.file_size(latest) == 0:
            logger.warning(f"🟡 {latest.name} is empty, skipping merge")
            return

        logger.info(f"🎵 Audio file for merge: {latest.name}")
        self.supervisor.set_audio_file(latest)

    def _log_result(self, result: FinishResult) -> None:
        if result.succeeded:
            logger.info(f"✅ Recording saved: {result.output_path}")
        else:
            logger.error(
                f"🛑 Recording ended as {result.state.value}: {result.output_path}"
            )
        if result.merge_error:
            logger.warning(f"🟡 Audio not merged: {result.merge_error}")


class AudioOnlySession:
    """System audio to WAV, without an encoder."""

    def __init__(
        self,
        app_config: Optional[ScreenRecConfig] = None,
        output_path: Optional[Union[str, Path]] = None,
        recorder_factory: Optional[RecorderFactory] = None,
    ) -> None:
        self.app_config = app_config or config.validate()
        work_directory = FileManager(self.app_config.session.work_directory).base_directory
        self.output_path = Path(
            output_path or work_directory / f"audio_{timestamp()}.wav"
        )
        self._recorder_factory = recorder_factory or (
            lambda: recorder_from_config(self.app_config)
        )
        self.recorder: Optional[AudioTimelineRecorder] = None

    def start(self) -> None:
        self.recorder = self._recorder_factory()
        self.recorder.start(
            AudioFormat(
                sample_rate=self.app_config.audio.sample_rate,
                channels=self.app_config.audio.channels,
            ),
            self.output_path,
        )

    def stop(self) -> Path:
        if self.recorder is not None:
            self.recorder.stop()
            logger.info(
                f"✅ Audio saved: {self.output_path} "
                f"({self.recorder.duration_seconds:.1f}s)"
            )
        return self.output_path


def record_audio_only(
    output_path: Optional[Union[str, Path]] = None,
    app_config: Optional[ScreenRecConfig] = None,
) -> AudioOnlySession:
    """Start an audio-only recording and return its session."""
    session = AudioOnlySession(app_config=app_config, output_path=output_path)
    session.start()
    return session
