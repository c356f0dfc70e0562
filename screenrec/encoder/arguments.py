"""FFmpeg invocation building for screen recording.

The argument list is a pure function of the EncoderConfig, so two sessions
with the same configuration always spawn the same command line.
"""

import platform
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from screenrec.config.validators import AudioPolicy, EncoderConfig
from screenrec.utils.exceptions import ConfigurationError

# Named bitrate presets in Mbps
BITRATE_PRESETS_MBPS = {
    "Low": 1.0,
    "Medium": 3.0,
    "High": 5.0,
}

THREAD_QUEUE_SIZE = 1024


def default_capture_backend() -> str:
    """Screen grabber matching the running platform."""
    return "gdigrab" if platform.system() == "Windows" else "x11grab"


def resolve_executable(configured: Optional[str], name: str) -> str:
    """Find an FFmpeg tool on disk.

    Args:
        configured: Explicit path from config, or None.
        name: Executable name looked up on PATH.

    Returns:
        Absolute path of the executable.

    Raises:
        ConfigurationError: If the executable cannot be found.
    """
    candidate = configured or name
    if Path(candidate).is_file():
        return str(Path(candidate).resolve())

    found = shutil.which(candidate)
    if found is None:
        raise ConfigurationError(
            f"{name} executable not found ({candidate}). Install FFmpeg or set "
            f"encoder.{name}_path in config.yml"
        )
    return found


def even(value: int) -> int:
    """Round down to an even number, as libx264 with yuv420p requires."""
    return max(2, value - value % 2)


def scaled_output_size(width: int, height: int, scale_percent: int) -> Tuple[int, int]:
    """Output size for a capture region at a resolution percentage."""
    return (
        even(width * scale_percent // 100),
        even(height * scale_percent // 100),
    )


def video_bitrate_mbps(preset: str, width: int, height: int) -> float:
    """Resolve a named bitrate preset.

    ``Auto`` picks by output pixel count: under 0.5 MP 1 Mbps, under 1 MP
    2 Mbps, otherwise 3 Mbps.
    """
    if preset in BITRATE_PRESETS_MBPS:
        return BITRATE_PRESETS_MBPS[preset]
    if preset != "Auto":
        raise ConfigurationError(f"Unknown bitrate preset: {preset}")

    pixels = width * height
    if pixels < 500_000:
        return 1.0
    if pixels < 1_000_000:
        return 2.0
    return 3.0


def estimate_file_size_per_minute(video_mbps: float, audio_kbps: int) -> float:
    """Expected output size in megabytes per recorded minute."""
    total_mbps = video_mbps + audio_kbps / 1000.0
    return total_mbps * 60 / 8


def expected_video_mbps(config: EncoderConfig) -> float:
    """Video bitrate used for size estimates, CRF falls back to Auto."""
    if config.video_bitrate_kbps is not None:
        return config.video_bitrate_kbps / 1000.0
    return video_bitrate_mbps("Auto", config.output_width, config.output_height)


def _capture_input_args(config: EncoderConfig) -> List[str]:
    rect = config.capture_rect
    args = [
        "-thread_queue_size",
        str(THREAD_QUEUE_SIZE),
        "-f",
        config.capture_backend,
        "-framerate",
        str(config.frame_rate),
    ]

    if config.capture_backend == "gdigrab":
        args += [
            "-offset_x",
            str(rect.x),
            "-offset_y",
            str(rect.y),
            "-video_size",
            f"{rect.width}x{rect.height}",
            "-use_wallclock_as_timestamps",
            "1",
            "-i",
            "desktop",
        ]
    else:
        args += [
            "-video_size",
            f"{rect.width}x{rect.height}",
            "-use_wallclock_as_timestamps",
            "1",
            "-i",
            f"{config.display}+{rect.x},{rect.y}",
        ]
    return args


def _audio_input_args(config: EncoderConfig, audio_input: str) -> List[str]:
    return [
        "-thread_queue_size",
        str(THREAD_QUEUE_SIZE),
        "-f",
        "s16le",
        "-ar",
        str(config.audio_sample_rate),
        "-ac",
        str(config.audio_channels),
        "-i",
        audio_input,
    ]


def _video_codec_args(config: EncoderConfig) -> List[str]:
    args = ["-c:v", "libx264", "-preset", config.preset]

    if config.video_bitrate_kbps is not None:
        kbps = config.video_bitrate_kbps
        args += [
            "-b:v",
            f"{kbps}k",
            "-maxrate",
            f"{kbps * 2}k",
            "-bufsize",
            f"{kbps * 4}k",
        ]
    else:
        args += ["-crf", str(config.crf)]

    args += [
        "-pix_fmt",
        "yuv420p",
        "-r",
        str(config.frame_rate),
        "-g",
        str(config.frame_rate * 2),
    ]
    return args


def build_encoder_args(
    config: EncoderConfig, ffmpeg_path: str, audio_input: Optional[str] = None
) -> List[str]:
    """Build the full FFmpeg command line.

    Args:
        config: Encoder configuration.
        ffmpeg_path: Resolved FFmpeg executable.
        audio_input: Raw PCM source (the FIFO path) under ``live_pipe``.

    Returns:
        Command as a list, executable first.
    """
    if config.audio_policy == AudioPolicy.LIVE_PIPE and audio_input is None:
        raise ConfigurationError("live_pipe audio policy requires an audio input")

    args = [ffmpeg_path, "-hide_banner", "-nostats", "-loglevel", "warning"]
    args += _capture_input_args(config)

    has_audio = config.audio_policy == AudioPolicy.LIVE_PIPE
    if has_audio:
        args += _audio_input_args(config, audio_input)

    args += _video_codec_args(config)

    if has_audio:
        args += [
            "-c:a",
            "aac",
            "-b:a",
            f"{config.audio_bitrate_kbps}k",
            "-shortest",
        ]

    if config.needs_scaling:
        args += ["-vf", f"scale={config.output_width}:{config.output_height}"]

    args += ["-movflags", "+faststart", "-y", str(config.output_path)]
    return args
