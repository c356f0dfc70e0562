"""Custom exception definitions for ScreenRec."""


class ScreenRecError(Exception):
    """Base exception class for ScreenRec errors."""

    pass


class ConfigurationError(ScreenRecError):
    """Raised when configuration is invalid or a required resource is missing.

    Always raised before any capture stream or child process is created.
    """

    pass


class AudioDeviceError(ConfigurationError):
    """Raised when no usable loopback capture device is available."""

    pass


class ProcessStartError(ScreenRecError):
    """Raised when the external encoder process cannot be spawned."""

    pass


class TransientIOError(ScreenRecError):
    """Raised when a write hits a disconnected or disposed audio pipe.

    Callers swallow it: the session keeps going without live audio.
    """

    pass


class TimeoutExceeded(ScreenRecError):
    """Raised internally when a stop or merge bound is reached."""

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} did not finish within {timeout:.1f}s")


class MergeFailed(ScreenRecError):
    """Raised when audio could not be muxed into the recorded video.

    Non-fatal: the video-only file remains the final artifact.
    """

    pass
