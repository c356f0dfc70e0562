"""Unit tests for recording session ordering."""

import time
from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from screenrec.config.validators import AudioPolicy
from screenrec.encoder.supervisor import EncoderState, FinishResult
from screenrec.session.recording_session import (
    AudioOnlySession,
    RecordingSession,
    build_encoder_config,
    recorder_from_config,
)
from screenrec.utils.exceptions import ProcessStartError, ScreenRecError


@pytest.fixture
def parts(tmp_path):
    """Recorder, supervisor and sleep sharing one call log."""
    manager = MagicMock()
    manager.supervisor.finish.return_value = FinishResult(
        state=EncoderState.EXITED_CLEAN, output_path=tmp_path / "out.mp4", exit_code=0
    )
    return manager


def make_session(app_config, parts, policy, tmp_path):
    return RecordingSession(
        app_config=app_config,
        output_path=tmp_path / "out.mp4",
        policy=policy,
        recorder_factory=lambda: parts.recorder,
        supervisor_factory=lambda encoder_config: parts.supervisor,
        sleep=parts.sleep,
    )


def names(manager):
    return [entry[0] for entry in manager.mock_calls if not entry[0].endswith("__")]


class TestStartOrdering:
    """Tests for start()."""

    def test_live_pipe_starts_audio_before_encoder(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.LIVE_PIPE, tmp_path)

        session.start()

        calls = names(parts)
        assert calls.index("recorder.start") < calls.index("sleep")
        assert calls.index("sleep") < calls.index("supervisor.start")
        assert calls.index("supervisor.configure") < calls.index("recorder.start")
        parts.recorder.subscribe.assert_called_once_with(
            parts.supervisor.write_audio_data
        )
        parts.sleep.assert_called_once_with(app_config.session.settle_delay_seconds)

    def test_file_merge_persists_temp_wav(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.FILE_MERGE, tmp_path)

        session.start()

        target_format, audio_path = parts.recorder.start.call_args.args
        assert audio_path.name.startswith("temp_audio_")
        assert audio_path.suffix == ".wav"
        assert audio_path.parent == session.work_directory
        assert target_format.bits_per_sample == 16
        parts.recorder.subscribe.assert_not_called()

    def test_no_audio_policy_skips_recorder(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.NONE, tmp_path)

        session.start()

        parts.recorder.start.assert_not_called()
        parts.supervisor.start.assert_called_once()

    def test_encoder_start_failure_stops_audio(self, app_config, parts, tmp_path):
        parts.supervisor.start.side_effect = ProcessStartError("spawn failed")
        session = make_session(app_config, parts, AudioPolicy.LIVE_PIPE, tmp_path)

        with pytest.raises(ProcessStartError):
            session.start()

        parts.recorder.stop.assert_called_once()
        parts.supervisor.dispose.assert_called_once()
        assert not session.is_running

    def test_double_start_rejected(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.NONE, tmp_path)
        session.start()

        with pytest.raises(ScreenRecError):
            session.start()


class TestStopOrdering:
    """Tests for stop()."""

    def test_live_pipe_stops_encoder_consumption_first(
        self, app_config, parts, tmp_path
    ):
        session = make_session(app_config, parts, AudioPolicy.LIVE_PIPE, tmp_path)
        session.start()
        parts.reset_mock()

        result = session.stop()

        assert names(parts) == [
            "supervisor.request_stop",
            "recorder.stop",
            "supervisor.finish",
            "supervisor.dispose",
        ]
        assert result.succeeded

    def test_file_merge_hands_newest_temp_file(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.FILE_MERGE, tmp_path)
        session.start()
        older = session.work_directory / "temp_audio_older.wav"
        older.write_bytes(b"\x01" * 100)
        time.sleep(0.05)
        newer = session.work_directory / "temp_audio_newer.wav"
        newer.write_bytes(b"\x01" * 100)
        parts.reset_mock()

        session.stop()

        assert parts.mock_calls[:4] == [
            call.recorder.stop(),
            call.sleep(app_config.session.audio_flush_delay_seconds),
            call.supervisor.set_audio_file(newer),
            call.supervisor.finish(),
        ]

    def test_file_merge_skips_empty_audio(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.FILE_MERGE, tmp_path)
        session.start()
        (session.work_directory / "temp_audio_empty.wav").write_bytes(b"")

        session.stop()

        parts.supervisor.set_audio_file.assert_not_called()
        parts.supervisor.finish.assert_called_once_with()

    def test_file_merge_without_temp_file(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.FILE_MERGE, tmp_path)
        session.start()

        session.stop()

        parts.supervisor.set_audio_file.assert_not_called()

    def test_stop_is_idempotent(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.NONE, tmp_path)
        session.start()

        first = session.stop()

        assert session.stop() is first
        parts.supervisor.finish.assert_called_once()

    def test_stop_before_start(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.NONE, tmp_path)

        with pytest.raises(ScreenRecError):
            session.stop()

    def test_stop_in_background(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.LIVE_PIPE, tmp_path)
        session.start()

        future = session.stop_in_background()

        assert future.result(timeout=5).succeeded
        assert session.stop_in_background() is future
        assert not session.is_running

    def test_abort_uses_quick_exit(self, app_config, parts, tmp_path):
        session = make_session(app_config, parts, AudioPolicy.LIVE_PIPE, tmp_path)
        session.start()

        session.abort()

        parts.supervisor.finish.assert_called_once_with(quick_exit=True)
        parts.recorder.stop.assert_called_once()
        parts.supervisor.dispose.assert_called_once()


class TestBuildEncoderConfig:
    """Tests for deriving EncoderConfig from application config."""

    def test_scaled_even_output(self, app_config, tmp_path):
        app_config.video.region.width = 1366
        app_config.video.region.height = 768
        app_config.video.resolution_scale = 50

        encoder_config = build_encoder_config(app_config, tmp_path / "a.mp4")

        assert encoder_config.capture_rect.width == 1366
        assert (encoder_config.output_width, encoder_config.output_height) == (682, 384)
        assert encoder_config.needs_scaling

    def test_odd_region_is_made_even(self, app_config, tmp_path):
        app_config.video.region.width = 1001
        app_config.video.region.height = 701

        encoder_config = build_encoder_config(app_config, tmp_path / "a.mp4")

        assert encoder_config.capture_rect.width == 1000
        assert encoder_config.capture_rect.height == 700
        assert not encoder_config.needs_scaling

    def test_bitrate_preset_replaces_crf(self, app_config, tmp_path):
        app_config.video.bitrate = "High"

        encoder_config = build_encoder_config(app_config, tmp_path / "a.mp4")

        assert encoder_config.video_bitrate_kbps == 5000
        assert encoder_config.crf is None

    def test_policy_override(self, app_config, tmp_path):
        encoder_config = build_encoder_config(
            app_config, tmp_path / "a.mp4", AudioPolicy.FILE_MERGE
        )

        assert encoder_config.audio_policy == AudioPolicy.FILE_MERGE
        assert encoder_config.capture_backend in ("gdigrab", "x11grab")


class TestAudioOnlySession:
    """Tests for audio-only recording."""

    def test_records_to_wav(self, app_config, tmp_path):
        recorder = MagicMock()
        recorder.duration_seconds = 1.5
        output = tmp_path / "meeting.wav"
        session = AudioOnlySession(
            app_config=app_config, output_path=output, recorder_factory=lambda: recorder
        )

        session.start()
        assert session.stop() == output

        target_format, path = recorder.start.call_args.args
        assert path == Path(output)
        assert target_format.sample_rate == app_config.audio.sample_rate
        recorder.stop.assert_called_once()


def test_recorder_from_config_converts_thresholds(app_config):
    app_config.audio.gap_threshold_ms = 250
    app_config.audio.tail_gap_threshold_ms = 40

    recorder = recorder_from_config(app_config)

    assert recorder.gap_threshold == pytest.approx(0.25)
    assert recorder.tail_gap_threshold == pytest.approx(0.04)
    assert recorder.block_size == app_config.audio.block_size
