"""Unit tests for configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from screenrec.config.config_loader import ConfigLoader
from screenrec.config.validators import (
    AudioPolicy,
    CaptureRect,
    EncoderConfig,
    validate_config,
)
from screenrec.utils.exceptions import ConfigurationError


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "audio:\n"
        "  sample_rate: 48000\n"
        "  gap_threshold_ms: 150\n"
        "encoder:\n"
        "  audio_policy: file_merge\n"
    )
    return path


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_dot_notation_get(self, config_file):
        loader = ConfigLoader(str(config_file))

        assert loader.get("audio.sample_rate") == 48000
        assert loader.get("audio.channels", 2) == 2
        assert loader.get("missing.key") is None

    def test_validated_defaults_fill_gaps(self, config_file):
        validated = ConfigLoader(str(config_file)).validate()

        assert validated.audio.sample_rate == 48000
        assert validated.audio.gap_threshold_ms == 150
        assert validated.audio.tail_gap_threshold_ms == 20
        assert validated.encoder.audio_policy == AudioPolicy.FILE_MERGE
        assert validated.session.temp_audio_pattern == "temp_*.wav"

    def test_sections_match_config_file(self, config_file):
        validated = ConfigLoader(str(config_file)).validate()

        assert set(type(validated).model_fields) == {
            "audio",
            "video",
            "encoder",
            "session",
            "logging",
        }

    def test_missing_file_uses_defaults(self, tmp_path):
        loader = ConfigLoader(str(tmp_path / "absent.yml"))

        assert loader.get_all() == {}
        assert loader.validate().encoder.audio_policy == AudioPolicy.LIVE_PIPE

    def test_env_var_selects_file(self, config_file, monkeypatch):
        monkeypatch.setenv("SCREENREC_CONFIG", str(config_file))

        assert ConfigLoader().config_path == Path(config_file)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("audio: [unclosed\n")

        with pytest.raises(ConfigurationError):
            ConfigLoader(str(path))

    def test_set_revalidates(self, config_file):
        loader = ConfigLoader(str(config_file))

        loader.set("audio.sample_rate", 12345)

        assert loader.validated_config is None
        assert "Sample rate" in loader.validation_error
        with pytest.raises(ConfigurationError):
            loader.validate()

    def test_set_creates_sections(self, config_file):
        loader = ConfigLoader(str(config_file))

        loader.set("video.region", {"left": 5, "top": 5, "width": 800, "height": 600})

        assert loader.validate().video.region.width == 800


class TestValidators:
    """Tests for the pydantic schemas."""

    @pytest.mark.parametrize(
        "section,values",
        [
            ("audio", {"channels": 6}),
            ("audio", {"bits_per_sample": 24}),
            ("audio", {"gap_threshold_ms": 0}),
            ("video", {"frame_rate": 29}),
            ("video", {"resolution_scale": 5}),
            ("video", {"bitrate": "Extreme"}),
            ("video", {"capture_backend": "avfoundation"}),
            ("encoder", {"audio_policy": "mixed"}),
            ("encoder", {"finish_timeout_seconds": 5000}),
            ("logging", {"level": "LOUD"}),
        ],
    )
    def test_invalid_values_rejected(self, section, values):
        with pytest.raises(ValueError):
            validate_config({section: values})

    def test_encoder_config_needs_quality(self, tmp_path):
        with pytest.raises(ValidationError):
            EncoderConfig(
                capture_rect=CaptureRect(x=0, y=0, width=100, height=100),
                output_width=100,
                output_height=100,
                output_path=tmp_path / "a.mp4",
                crf=None,
                video_bitrate_kbps=None,
            )

    def test_encoder_config_is_frozen(self, encoder_config):
        with pytest.raises(ValidationError):
            encoder_config.frame_rate = 60

    def test_encoder_config_derived_values(self, encoder_config):
        assert encoder_config.audio_block_align == 4
        assert not encoder_config.needs_scaling
