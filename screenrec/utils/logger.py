"""Logging utilities for ScreenRec.

All module loggers hang off the ``screenrec`` package logger, which owns the
handlers. Records come from several threads at once (PortAudio callback,
audio timeline, encoder stderr drain), so the thread name is part of every
line.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from screenrec.config.config_loader import config

PACKAGE_LOGGER = "screenrec"

DEFAULT_FORMAT = (
    "%(asctime)s %(emoji)s [%(threadName)s] %(name)s %(levelname)s: %(message)s"
)


class EmojiFormatter(logging.Formatter):
    """Formatter filling the ``%(emoji)s`` field from the record level."""

    EMOJI_MAP = {
        logging.DEBUG: "🐛",
        logging.INFO: "🟢",
        logging.WARNING: "🟡",
        logging.ERROR: "🛑",
        logging.CRITICAL: "🛑",
    }

    def __init__(self, fmt: str = DEFAULT_FORMAT, use_emoji: bool = True) -> None:
        super().__init__(fmt)
        self.use_emoji = use_emoji

    def format(self, record: logging.LogRecord) -> str:
        # Set on the record rather than the format string, formatters are shared
        # across threads
        record.emoji = self.EMOJI_MAP.get(record.levelno, "") if self.use_emoji else "-"
        return super().format(record)


def _daily_log_file(directory: Path) -> Path:
    date_str = datetime.now().strftime("%Y-%m-%d")
    return directory / f"screenrec-{date_str}.log"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach console and daily file handlers to the package logger once.

    Args:
        level: Level name overriding ``logging.level``.

    Returns:
        The package logger.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if level is not None:
        set_level(level)

    if package_logger.handlers:
        return package_logger

    log_format = config.get("logging.format", DEFAULT_FORMAT)
    package_logger.setLevel(
        getattr(logging, str(level or config.get("logging.level", "INFO")).upper())
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(EmojiFormatter(log_format))
    package_logger.addHandler(console_handler)

    if config.get("logging.to_file", True):
        log_dir = Path(config.get("logging.directory", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(
            _daily_log_file(log_dir), mode="a", encoding="utf-8"
        )
        file_handler.setFormatter(EmojiFormatter(log_format, use_emoji=False))
        package_logger.addHandler(file_handler)

    return package_logger


def set_level(level: str) -> None:
    """Change the level of every ScreenRec logger."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(getattr(logging, level.upper()))


def setup_logger(name: str) -> logging.Logger:
    """Get a module logger under the ``screenrec`` package logger.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger whose records reach the package handlers.
    """
    configure_logging()
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
