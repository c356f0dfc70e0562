"""Unit tests for FFmpeg command construction."""

from unittest.mock import patch

import pytest

from screenrec.config.validators import AudioPolicy
from screenrec.encoder.arguments import (
    build_encoder_args,
    default_capture_backend,
    estimate_file_size_per_minute,
    even,
    resolve_executable,
    scaled_output_size,
    video_bitrate_mbps,
)
from screenrec.utils.exceptions import ConfigurationError


def index_of(args, flag, start=0):
    return args.index(flag, start)


class TestBuildEncoderArgs:
    """Tests for build_encoder_args."""

    def test_x11grab_capture_input(self, encoder_config):
        args = build_encoder_args(encoder_config, "ffmpeg")

        assert args[0] == "ffmpeg"
        assert args[args.index("-f") + 1] == "x11grab"
        assert args[args.index("-video_size") + 1] == "640x480"
        assert args[args.index("-i") + 1] == ":0.0+10,20"
        assert args[-2:] == ["-y", str(encoder_config.output_path)]

    def test_gdigrab_capture_input(self, encoder_config):
        config = encoder_config.model_copy(update={"capture_backend": "gdigrab"})

        args = build_encoder_args(config, "ffmpeg.exe")

        assert args[args.index("-offset_x") + 1] == "10"
        assert args[args.index("-offset_y") + 1] == "20"
        assert args[args.index("-i") + 1] == "desktop"
        assert args.index("-framerate") < args.index("-i")

    def test_deterministic(self, encoder_config):
        assert build_encoder_args(encoder_config, "ffmpeg") == build_encoder_args(
            encoder_config, "ffmpeg"
        )

    def test_crf_quality(self, encoder_config):
        args = build_encoder_args(encoder_config, "ffmpeg")

        assert args[args.index("-crf") + 1] == "23"
        assert "-b:v" not in args
        assert args[args.index("-pix_fmt") + 1] == "yuv420p"
        assert args[args.index("-g") + 1] == "60"

    def test_bitrate_quality(self, encoder_config):
        config = encoder_config.model_copy(
            update={"crf": None, "video_bitrate_kbps": 3000}
        )

        args = build_encoder_args(config, "ffmpeg")

        assert args[args.index("-b:v") + 1] == "3000k"
        assert args[args.index("-maxrate") + 1] == "6000k"
        assert args[args.index("-bufsize") + 1] == "12000k"
        assert "-crf" not in args

    def test_no_audio_without_pipe(self, encoder_config):
        args = build_encoder_args(encoder_config, "ffmpeg")

        assert "s16le" not in args
        assert "-c:a" not in args
        assert args.count("-i") == 1

    def test_live_pipe_adds_raw_pcm_input(self, encoder_config):
        config = encoder_config.model_copy(
            update={"audio_policy": AudioPolicy.LIVE_PIPE}
        )

        args = build_encoder_args(config, "ffmpeg", "/tmp/audio.pcm")

        first_input = index_of(args, "-i")
        audio_input = index_of(args, "-i", first_input + 1)
        assert args[audio_input + 1] == "/tmp/audio.pcm"
        assert args[args.index("s16le") - 1] == "-f"
        assert args[args.index("-ar") + 1] == "44100"
        assert args[args.index("-ac") + 1] == "2"
        assert audio_input < args.index("-c:v")
        assert args[args.index("-c:a") + 1] == "aac"
        assert args[args.index("-b:a") + 1] == "192k"
        assert "-shortest" in args

    def test_live_pipe_requires_audio_input(self, encoder_config):
        config = encoder_config.model_copy(
            update={"audio_policy": AudioPolicy.LIVE_PIPE}
        )

        with pytest.raises(ConfigurationError):
            build_encoder_args(config, "ffmpeg")

    def test_scale_filter_only_when_sizes_differ(self, encoder_config):
        assert "-vf" not in build_encoder_args(encoder_config, "ffmpeg")

        scaled = encoder_config.model_copy(
            update={"output_width": 320, "output_height": 240}
        )
        args = build_encoder_args(scaled, "ffmpeg")

        assert args[args.index("-vf") + 1] == "scale=320:240"
        assert args.index("-vf") > args.index("-c:v")
        assert args.index("-movflags") > args.index("-vf")

    def test_faststart_before_output(self, encoder_config):
        args = build_encoder_args(encoder_config, "ffmpeg")

        assert args[args.index("-movflags") + 1] == "+faststart"
        assert args.index("-movflags") < args.index("-y")


class TestSizing:
    """Tests for size and bitrate helpers."""

    @pytest.mark.parametrize("value,expected", [(1366, 1366), (683, 682), (1, 2)])
    def test_even(self, value, expected):
        assert even(value) == expected

    def test_scaled_output_size(self):
        assert scaled_output_size(1366, 768, 50) == (682, 384)
        assert scaled_output_size(1920, 1080, 100) == (1920, 1080)

    @pytest.mark.parametrize(
        "preset,width,height,expected",
        [
            ("Low", 1920, 1080, 1.0),
            ("Medium", 1920, 1080, 3.0),
            ("High", 1920, 1080, 5.0),
            ("Auto", 640, 480, 1.0),
            ("Auto", 1280, 720, 2.0),
            ("Auto", 1920, 1080, 3.0),
        ],
    )
    def test_video_bitrate_presets(self, preset, width, height, expected):
        assert video_bitrate_mbps(preset, width, height) == expected

    def test_unknown_preset(self):
        with pytest.raises(ConfigurationError):
            video_bitrate_mbps("Ultra", 100, 100)

    def test_estimate_file_size_per_minute(self):
        assert estimate_file_size_per_minute(3.0, 192) == pytest.approx(23.94)


class TestExecutables:
    """Tests for executable resolution."""

    def test_missing_executable(self):
        with patch("screenrec.encoder.arguments.shutil.which", return_value=None):
            with pytest.raises(ConfigurationError):
                resolve_executable(None, "ffmpeg")

    def test_found_on_path(self):
        with patch(
            "screenrec.encoder.arguments.shutil.which",
            return_value="/usr/bin/ffmpeg",
        ):
            assert resolve_executable(None, "ffmpeg") == "/usr/bin/ffmpeg"

    def test_explicit_file(self, tmp_path):
        binary = tmp_path / "ffmpeg"
        binary.write_text("")

        assert resolve_executable(str(binary), "ffmpeg") == str(binary.resolve())

    def test_default_backend_by_platform(self):
        with patch("screenrec.encoder.arguments.platform.system", return_value="Windows"):
            assert default_capture_backend() == "gdigrab"
        with patch("screenrec.encoder.arguments.platform.system", return_value="Linux"):
            assert default_capture_backend() == "x11grab"
