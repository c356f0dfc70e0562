"""Recording session orchestration."""

from .recording_session import (
    AudioOnlySession,
    RecordingSession,
    build_encoder_config,
    record_audio_only,
)

__all__ = [
    "AudioOnlySession",
    "RecordingSession",
    "build_encoder_config",
    "record_audio_only",
]
