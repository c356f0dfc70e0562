"""Main entry point for ScreenRec."""

import argparse
import signal
import sys
import threading
from typing import List, Optional

from screenrec import __version__
from screenrec.audio.device_manager import list_capture_devices
from screenrec.config.config_loader import config
from screenrec.config.validators import AudioPolicy, RegionConfig
from screenrec.session.recording_session import (
    AudioOnlySession,
    RecordingSession,
)
from screenrec.utils.exceptions import (
    ConfigurationError,
    ProcessStartError,
    ScreenRecError,
)
from screenrec.utils.logger import set_level, setup_logger

logger = setup_logger(__name__)

EXIT_SUCCESS = 0
EXIT_USAGE_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_PROCESS_ERROR = 3
EXIT_INTERNAL_ERROR = 5

# Set by the signal handler, waited on by the recording loop
stop_event = threading.Event()


def signal_handler(sig, frame):
    """Handle interrupt signals gracefully."""
    if stop_event.is_set():
        logger.warning("Second interrupt received, still stopping...")
        return
    logger.info("Received interrupt signal, stopping recording...")
    stop_event.set()


def parse_region(value: str) -> RegionConfig:
    """Parse ``L,T,W,H`` into a capture region."""
    try:
        left, top, width, height = (int(part) for part in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Region must be LEFT,TOP,WIDTH,HEIGHT, got '{value}'"
        )
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError("Region width and height must be positive")
    return RegionConfig(left=left, top=top, width=width, height=height)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="screenrec",
        description="Record the screen with wall-clock aligned system audio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  screenrec record
  screenrec record --region 0,0,1280,720 --fps 24 --policy file_merge
  screenrec record-audio --output meeting.wav
  screenrec devices
        """,
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command")

    record = subparsers.add_parser("record", help="Record screen and audio")
    record.add_argument(
        "--region",
        type=parse_region,
        default=None,
        help="Capture region as LEFT,TOP,WIDTH,HEIGHT (default: from config)",
    )
    record.add_argument(
        "--scale",
        type=int,
        default=None,
        help="Output resolution as a percentage of the region",
    )
    record.add_argument("--fps", type=int, default=None, help="Frame rate")
    record.add_argument(
        "--policy",
        type=str,
        default=None,
        choices=[policy.value for policy in AudioPolicy],
        help="How audio reaches the video (default: from config)",
    )
    record.add_argument(
        "-o", "--output", type=str, default=None, help="Output video path"
    )

    record_audio = subparsers.add_parser(
        "record-audio", help="Record system audio to a WAV file"
    )
    record_audio.add_argument(
        "-o", "--output", type=str, default=None, help="Output WAV path"
    )

    subparsers.add_parser("devices", help="List capture devices")

    return parser


def apply_overrides(args: argparse.Namespace) -> None:
    """Push command line overrides into the loaded configuration."""
    if getattr(args, "region", None) is not None:
        config.set("video.region", args.region.model_dump())
    if getattr(args, "scale", None) is not None:
        config.set("video.resolution_scale", args.scale)
    if getattr(args, "fps", None) is not None:
        config.set("video.frame_rate", args.fps)
    if getattr(args, "policy", None) is not None:
        config.set("encoder.audio_policy", args.policy)


def wait_for_stop() -> None:
    while not stop_event.wait(0.5):
        pass


def run_record(args: argparse.Namespace) -> int:
    apply_overrides(args)
    session = RecordingSession(app_config=config.validate(), output_path=args.output)
    session.start()
    print("Recording... press Ctrl+C to stop")

    try:
        wait_for_stop()
    except KeyboardInterrupt:
        logger.info("Interrupted by user (Ctrl+C)")

    result = session.stop_in_background().result()
    print(f"Saved: {result.output_path}")
    if result.merge_error:
        print(f"Audio was not merged: {result.merge_error}", file=sys.stderr)
    return EXIT_SUCCESS if result.succeeded else EXIT_INTERNAL_ERROR


def run_record_audio(args: argparse.Namespace) -> int:
    session = AudioOnlySession(app_config=config.validate(), output_path=args.output)
    session.start()
    print("Recording audio... press Ctrl+C to stop")

    try:
        wait_for_stop()
    except KeyboardInterrupt:
        logger.info("Interrupted by user (Ctrl+C)")

    output = session.stop()
    print(f"Saved: {output}")
    return EXIT_SUCCESS


def run_devices(args: argparse.Namespace) -> int:
    devices = list_capture_devices()
    if not devices:
        print("No capture devices found")
        return EXIT_CONFIG_ERROR

    for device in devices:
        marker = "*" if device["loopback"] else " "
        print(
            f"{marker} [{device['index']:>2}] {device['name']} "
            f"({device['channels']}ch, {device['default_samplerate']:.0f}Hz)"
        )
    print("\n* loopback candidate")
    return EXIT_SUCCESS


COMMANDS = {
    "record": run_record,
    "record-audio": run_record_audio,
    "devices": run_devices,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to run ScreenRec."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE_ERROR

    if args.verbose:
        set_level("DEBUG")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        return COMMANDS[args.command](args)
    except ConfigurationError as e:
        logger.error(f"🛑 Configuration error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ProcessStartError as e:
        logger.error(f"🛑 {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_PROCESS_ERROR
    except ScreenRecError as e:
        logger.error(f"🛑 {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INTERNAL_ERROR
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return EXIT_INTERNAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
