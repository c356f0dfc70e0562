"""Audio capture and processing modules.

This package provides system audio recording with modular components:
- recorder: AudioTimelineRecorder, the wall-clock aligned timeline
- formats: Format descriptors and conversion to 16-bit PCM
- device_manager: Loopback device discovery
- stream_manager: Capture stream creation
- diagnostics: Logging and troubleshooting
"""

from screenrec.audio.formats import AudioFormat, AudioFormatConverter
from screenrec.audio.recorder import AudioTimelineRecorder

__all__ = ["AudioFormat", "AudioFormatConverter", "AudioTimelineRecorder"]
