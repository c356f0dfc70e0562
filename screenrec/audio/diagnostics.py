"""Diagnostics for audio timeline recording.

This module handles heartbeat logging, failure details and troubleshooting
suggestions for the AudioTimelineRecorder class.
"""

import platform
from typing import TYPE_CHECKING, Optional

from screenrec.utils.logger import setup_logger

if TYPE_CHECKING:
    from screenrec.audio.formats import AudioFormat
    from screenrec.audio.recorder import TimelineState

logger = setup_logger(__name__)


def log_heartbeat(
    timeline: "TimelineState", now: float, queue_depth: int, dropped_blocks: int
) -> None:
    """Log a periodic summary of the timeline.

    Args:
        timeline: Current timeline state.
        now: Monotonic timestamp of the heartbeat.
        queue_depth: Blocks waiting for the timeline thread.
        dropped_blocks: Blocks discarded because the queue was full.
    """
    elapsed = now - timeline.start_time
    drift = elapsed - timeline.duration
    logger.debug(
        f"💓 Audio timeline: {timeline.duration:.2f}s written over {elapsed:.2f}s "
        f"(drift {drift * 1000:+.0f}ms, silence {timeline.silence_seconds:.2f}s, "
        f"{timeline.blocks_processed} blocks, queue {queue_depth}, "
        f"dropped {dropped_blocks})"
    )


def log_timeline_summary(timeline: "TimelineState") -> None:
    """Log the final shape of a finished timeline."""
    wall = (timeline.stop_time or timeline.last_sample_time) - timeline.start_time
    logger.info(
        f"📊 Audio recorded: {timeline.duration:.2f}s "
        f"(wall clock {wall:.2f}s, inserted silence {timeline.silence_seconds:.2f}s, "
        f"{timeline.total_bytes_written} bytes)"
    )


def log_detailed_error_info(
    error: Exception, device: Optional[int], capture_format: "AudioFormat"
) -> None:
    """Log detailed error information for debugging.

    Args:
        error: The exception that occurred.
        device: Device index or None for default.
        capture_format: The format the stream was opened with.
    """
    logger.error("=" * 60)
    logger.error("AUDIO CAPTURE ERROR DETAILS")
    logger.error("=" * 60)
    logger.error(f"Error type: {type(error).__name__}")
    logger.error(f"Error message: {error}")
    logger.error(f"Device: {device}")
    logger.error(f"Capture format: {capture_format.describe()}")
    logger.error(f"Platform: {platform.system()} {platform.release()}")
    logger.error("=" * 60)
    suggest_loopback_fixes()


def suggest_loopback_fixes() -> None:
    """Suggest platform-specific ways to expose system audio."""
    system = platform.system()

    logger.info("=" * 60)
    logger.info("SUGGESTED FIXES")
    logger.info("=" * 60)

    if system == "Linux":
        logger.info("  1. List sources: pactl list short sources")
        logger.info("  2. Use the '.monitor' source of your output sink")
        logger.info("  3. Set audio.device to its index (screenrec devices)")
    elif system == "Darwin":
        logger.info("  1. Install BlackHole and route output through it")
        logger.info("  2. Create a Multi-Output Device to keep hearing audio")
    elif system == "Windows":
        logger.info("  1. Enable 'Stereo Mix' under Sound > Recording devices")
        logger.info("  2. Set audio.device to its index (screenrec devices)")
    else:
        logger.info("  1. Set audio.device to a loopback-capable input")

    logger.info("=" * 60)
