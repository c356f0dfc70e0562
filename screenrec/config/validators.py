"""Configuration validation schemas using Pydantic."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AudioPolicy(str, Enum):
    """How audio reaches the encoder output."""

    NONE = "none"
    LIVE_PIPE = "live_pipe"
    FILE_MERGE = "file_merge"


class AudioConfig(BaseModel):
    """Audio capture configuration validation."""

    device: Optional[int] = Field(
        default=None, description="Capture device index (None = auto loopback)"
    )
    sample_rate: int = Field(default=44100, description="Target sample rate")
    channels: int = Field(default=2, description="Target channel count")
    bits_per_sample: int = Field(default=16, description="Target bit depth")
    block_size: int = Field(default=1024, description="Capture frames per block")
    queue_size: int = Field(default=100, description="Pending capture blocks")
    gap_threshold_ms: float = Field(
        default=100.0, description="Silence is inserted for gaps above this"
    )
    tail_gap_threshold_ms: float = Field(
        default=20.0, description="Tail silence is written above this at stop"
    )
    heartbeat_interval_seconds: float = Field(
        default=5.0, description="Minimum spacing of diagnostic heartbeats"
    )
    stop_timeout_seconds: float = Field(
        default=3.0, description="Bound on the stream stop notification wait"
    )

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        valid_rates = (8000, 16000, 22050, 32000, 44100, 48000, 96000)
        if v not in valid_rates:
            raise ValueError(f"Sample rate must be one of: {valid_rates}")
        return v

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("Channels must be 1 (mono) or 2 (stereo)")
        return v

    @field_validator("bits_per_sample")
    @classmethod
    def validate_bits(cls, v: int) -> int:
        if v != 16:
            raise ValueError("Only 16-bit PCM is supported as target format")
        return v

    @field_validator("gap_threshold_ms", "tail_gap_threshold_ms")
    @classmethod
    def validate_thresholds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Gap thresholds must be positive")
        return v


class RegionConfig(BaseModel):
    """Screen region to capture, in desktop pixels."""

    left: int = 0
    top: int = 0
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)


class VideoConfig(BaseModel):
    """Video capture and encoding configuration validation."""

    capture_backend: str = Field(
        default="auto", description="gdigrab, x11grab or auto (by platform)"
    )
    display: str = Field(default=":0.0", description="X11 display for x11grab")
    region: RegionConfig = Field(default_factory=RegionConfig)
    resolution_scale: int = Field(
        default=100, description="Output size as a percentage of the region"
    )
    frame_rate: int = Field(default=30, description="Capture frame rate")
    bitrate: Optional[str] = Field(
        default=None, description="Low/Medium/High/Auto, or None to use CRF"
    )
    crf: int = Field(default=23, description="x264 constant rate factor")
    preset: str = Field(default="veryfast", description="x264 preset")
    audio_bitrate: int = Field(default=192, description="AAC bitrate in kbps")

    @field_validator("capture_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        valid_backends = ("auto", "gdigrab", "x11grab")
        if v not in valid_backends:
            raise ValueError(f"Capture backend must be one of: {valid_backends}")
        return v

    @field_validator("resolution_scale")
    @classmethod
    def validate_scale(cls, v: int) -> int:
        if v < 10 or v > 100:
            raise ValueError("Resolution scale must be between 10 and 100")
        return v

    @field_validator("frame_rate")
    @classmethod
    def validate_frame_rate(cls, v: int) -> int:
        if v not in (15, 24, 25, 30, 50, 60):
            raise ValueError("Frame rate must be one of 15/24/25/30/50/60")
        return v

    @field_validator("bitrate")
    @classmethod
    def validate_bitrate(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("Low", "Medium", "High", "Auto"):
            raise ValueError("Bitrate must be Low, Medium, High or Auto")
        return v

    @field_validator("crf")
    @classmethod
    def validate_crf(cls, v: int) -> int:
        if v < 0 or v > 51:
            raise ValueError("CRF must be between 0 and 51")
        return v

    @field_validator("preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        valid_presets = (
            "ultrafast",
            "superfast",
            "veryfast",
            "faster",
            "fast",
            "medium",
            "slow",
            "slower",
            "veryslow",
        )
        if v not in valid_presets:
            raise ValueError(f"Preset must be one of: {valid_presets}")
        return v

    @field_validator("audio_bitrate")
    @classmethod
    def validate_audio_bitrate(cls, v: int) -> int:
        if v not in (64, 96, 128, 160, 192, 256, 320):
            raise ValueError("Audio bitrate must be a standard AAC rate in kbps")
        return v


class EncoderSettings(BaseModel):
    """External encoder process configuration validation."""

    ffmpeg_path: Optional[str] = Field(default=None, description="FFmpeg binary")
    ffprobe_path: Optional[str] = Field(default=None, description="FFprobe binary")
    audio_policy: AudioPolicy = Field(default=AudioPolicy.LIVE_PIPE)
    quick_exit_timeout_seconds: float = Field(default=3.0)
    finish_timeout_seconds: float = Field(default=600.0)
    finish_seconds_per_mb: float = Field(default=0.5)
    max_finish_timeout_seconds: float = Field(default=1800.0)
    merge_timeout_seconds: float = Field(default=900.0)
    file_stable_timeout_seconds: float = Field(default=60.0)
    pipe_write_timeout_seconds: float = Field(default=2.0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "EncoderSettings":
        if self.quick_exit_timeout_seconds <= 0:
            raise ValueError("Quick exit timeout must be positive")
        if self.max_finish_timeout_seconds < self.finish_timeout_seconds:
            raise ValueError("Max finish timeout cannot be below the base timeout")
        return self


class SessionConfig(BaseModel):
    """Recording session ordering configuration validation."""

    work_directory: str = Field(default="recordings")
    settle_delay_seconds: float = Field(default=0.3)
    audio_flush_delay_seconds: float = Field(default=1.0)
    temp_audio_pattern: str = Field(default="temp_*.wav")


class LoggingConfig(BaseModel):
    """Logging configuration validation."""

    level: str = Field(default="INFO", description="Logging level")
    directory: str = Field(default="logs", description="Log directory")
    to_file: bool = Field(default=True, description="Write daily log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class ScreenRecConfig(BaseModel):
    """Main ScreenRec configuration validation."""

    audio: AudioConfig = Field(default_factory=AudioConfig)
    video: VideoConfig = Field(default_factory=VideoConfig)
    encoder: EncoderSettings = Field(default_factory=EncoderSettings)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "extra": "allow",
        "validate_assignment": True,
    }


class CaptureRect(BaseModel):
    """Capture region passed to the encoder."""

    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class EncoderConfig(BaseModel):
    """Immutable description of one encoder invocation."""

    model_config = ConfigDict(frozen=True)

    capture_rect: CaptureRect
    output_width: int = Field(gt=0)
    output_height: int = Field(gt=0)
    output_path: Path
    frame_rate: int = Field(default=30, gt=0)
    crf: Optional[int] = 23
    video_bitrate_kbps: Optional[int] = None
    preset: str = "veryfast"
    audio_policy: AudioPolicy = AudioPolicy.NONE
    audio_sample_rate: int = 44100
    audio_channels: int = 2
    audio_bitrate_kbps: int = 192
    capture_backend: str = "x11grab"
    display: str = ":0.0"

    @model_validator(mode="after")
    def validate_quality(self) -> "EncoderConfig":
        if self.crf is None and self.video_bitrate_kbps is None:
            raise ValueError("Either crf or video_bitrate_kbps must be set")
        if self.capture_backend not in ("gdigrab", "x11grab"):
            raise ValueError(f"Unsupported capture backend: {self.capture_backend}")
        return self

    @property
    def needs_scaling(self) -> bool:
        return (self.capture_rect.width, self.capture_rect.height) != (
            self.output_width,
            self.output_height,
        )

    @property
    def audio_block_align(self) -> int:
        return self.audio_channels * 2


def validate_config(config_dict: Dict[str, Any]) -> ScreenRecConfig:
    """Validate configuration dictionary using Pydantic schemas.

    Args:
        config_dict: Configuration dictionary to validate

    Returns:
        Validated ScreenRecConfig instance

    Raises:
        ValueError: If configuration validation fails
    """
    try:
        return ScreenRecConfig(**config_dict)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
