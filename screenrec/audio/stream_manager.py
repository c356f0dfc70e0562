"""Stream management for loopback audio capture.

This module opens the PortAudio input stream feeding AudioTimelineRecorder.
The stream delivers float32 blocks to a data callback and reports the end of
the stream, requested or not, through a finished callback.
"""

from typing import Any, Callable, Optional, Tuple

from screenrec.audio.device_manager import (
    find_loopback_device,
    load_sounddevice,
    query_capture_format,
)
from screenrec.audio.diagnostics import log_detailed_error_info
from screenrec.audio.formats import AudioFormat
from screenrec.utils.exceptions import AudioDeviceError
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

DataCallback = Callable[[Any, int, Any, Any], None]
FinishedCallback = Callable[[], None]


def create_capture_stream(
    device: int,
    capture_format: AudioFormat,
    block_size: int,
    callback: DataCallback,
    finished_callback: FinishedCallback,
) -> Any:
    """Create (but do not start) an input stream.

    Args:
        device: Device index.
        capture_format: Format the stream is opened with.
        block_size: Frames per callback.
        callback: PortAudio data callback.
        finished_callback: Called once the stream becomes inactive.

    Returns:
        Created ``sounddevice.InputStream``.

    Raises:
        AudioDeviceError: If the stream cannot be opened.
    """
    sd = load_sounddevice()
    try:
        stream = sd.InputStream(
            device=device,
            channels=capture_format.channels,
            samplerate=capture_format.sample_rate,
            blocksize=block_size,
            dtype="float32",
            callback=callback,
            finished_callback=finished_callback,
        )
    except Exception as e:
        log_detailed_error_info(e, device, capture_format)
        raise AudioDeviceError(f"Failed to open capture stream: {e}") from e

    logger.debug(
        f"Created stream: {capture_format.describe()}, blocksize={block_size}"
    )
    return stream


def open_loopback_stream(
    preferred_device: Optional[int],
    block_size: int,
    callback: DataCallback,
    finished_callback: FinishedCallback,
) -> Tuple[Any, AudioFormat]:
    """Find the loopback device and open a stream on it.

    Args:
        preferred_device: Configured device index or None to auto-detect.
        block_size: Frames per callback.
        callback: PortAudio data callback.
        finished_callback: Called once the stream becomes inactive.

    Returns:
        Tuple of (stream, capture format).
    """
    device = find_loopback_device(preferred_device)
    capture_format = query_capture_format(device)
    stream = create_capture_stream(
        device, capture_format, block_size, callback, finished_callback
    )
    return stream, capture_format
