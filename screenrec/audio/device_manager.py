"""Device management for loopback audio capture.

This module enumerates capture devices and picks the one that carries the
system's playback mix: PulseAudio/PipeWire "Monitor of ..." sources,
virtual drivers such as BlackHole or Soundflower, or "Stereo Mix" on
Windows.
"""

from typing import Any, Dict, List, Optional

from screenrec.audio.formats import AudioFormat
from screenrec.utils.exceptions import AudioDeviceError
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

LOOPBACK_KEYWORDS = (
    "monitor",
    "loopback",
    "blackhole",
    "soundflower",
    "stereo mix",
    "what u hear",
    "wave out mix",
)


def load_sounddevice():
    # PortAudio is loaded on import, so defer it until a device is needed
    import sounddevice as sd

    return sd


def is_loopback_name(name: str) -> bool:
    """Check whether a device name looks like a loopback source."""
    lowered = name.lower()
    return any(keyword in lowered for keyword in LOOPBACK_KEYWORDS)


def list_capture_devices() -> List[Dict[str, Any]]:
    """Enumerate devices with input channels.

    Returns:
        List of device dictionaries with a ``loopback`` marker.
    """
    sd = load_sounddevice()
    devices = sd.query_devices()
    capture_devices = []

    for i, device in enumerate(devices):
        if device["max_input_channels"] < 1:
            continue
        capture_devices.append(
            {
                "index": i,
                "name": device["name"],
                "channels": device["max_input_channels"],
                "default_samplerate": device["default_samplerate"],
                "hostapi": device.get("hostapi", 0),
                "loopback": is_loopback_name(device["name"]),
            }
        )

    return capture_devices


def find_loopback_device(preferred: Optional[int] = None) -> int:
    """Pick the capture device for system audio.

    Args:
        preferred: Configured device index, used as-is when it has inputs.

    Returns:
        Device index.

    Raises:
        AudioDeviceError: If no loopback-capable device is present.
    """
    try:
        devices = list_capture_devices()
    except Exception as e:
        raise AudioDeviceError(f"Audio device enumeration failed: {e}") from e

    if preferred is not None:
        for device in devices:
            if device["index"] == preferred:
                logger.debug(
                    f"Using configured capture device {preferred}: {device['name']}"
                )
                return preferred
        raise AudioDeviceError(
            f"Configured device {preferred} has no input channels or is missing"
        )

    for device in devices:
        if device["loopback"]:
            logger.info(f"🔊 Loopback device: {device['name']} (index {device['index']})")
            return device["index"]

    raise AudioDeviceError(
        "No loopback capture device found. Enable a monitor source "
        "(PulseAudio/PipeWire), install BlackHole (macOS) or enable Stereo Mix "
        "(Windows), or set audio.device in config.yml"
    )


def query_capture_format(device: int, max_channels: int = 2) -> AudioFormat:
    """Describe the format the device will deliver.

    Streams are opened as 32-bit float at the device's default rate, which
    every PortAudio host API supports.

    Args:
        device: Device index.
        max_channels: Upper bound on captured channels.

    Returns:
        Capture AudioFormat.
    """
    sd = load_sounddevice()
    try:
        device_info = sd.query_devices(device)
    except Exception as e:
        raise AudioDeviceError(f"Device {device} is not available: {e}") from e

    channels = max(1, min(max_channels, int(device_info["max_input_channels"])))
    sample_rate = int(device_info.get("default_samplerate", 48000))

    logger.debug(
        f"Device {device} ({device_info['name']}): {channels}ch @ {sample_rate}Hz"
    )
    return AudioFormat(
        sample_rate=sample_rate, channels=channels, bits_per_sample=32, is_float=True
    )
