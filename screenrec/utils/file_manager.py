"""File management utilities for ScreenRec."""

import os
import time
from pathlib import Path
from typing import Callable, List, Optional

from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)


def creation_time(file_path: Path) -> float:
    """Best available creation timestamp for a file.

    ``st_birthtime`` exists on macOS and Windows; Linux falls back to
    ``st_ctime``, which is the inode change time.
    """
    stat = file_path.stat()
    return getattr(stat, "st_birthtime", stat.st_ctime)


class FileManager:
    """Locates, stabilises and replaces recording artifacts in a directory."""

    def __init__(self, base_directory: str = "recordings"):
        """Initialize file manager.

        Args:
            base_directory: Directory holding recordings and temp audio
        """
        self.base_directory = Path(base_directory)
        self.base_directory.mkdir(parents=True, exist_ok=True)

    def find_latest(self, file_pattern: str = "temp_*.wav") -> Optional[Path]:
        """Return the most recently created file matching the pattern.

        Args:
            file_pattern: Glob pattern relative to the base directory

        Returns:
            Path of the newest match, or None when nothing matches
        """
        files: List[Path] = [
            f for f in self.base_directory.glob(file_pattern) if f.is_file()
        ]
        logger.debug(f"📂 {len(files)} files match {file_pattern}")

        if not files:
            return None

        return max(files, key=creation_time)

    @staticmethod
    def file_size(file_path: Path) -> int:
        """Size in bytes, 0 for a missing file."""
        try:
            return file_path.stat().st_size
        except OSError:
            return 0

    @staticmethod
    def wait_for_stable_size(
        file_path: Path,
        timeout: float = 60.0,
        interval: float = 0.1,
        required_checks: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        """Wait until a file stops growing.

        Args:
            file_path: File being written by another process
            timeout: Upper bound in seconds
            interval: Spacing between size samples
            required_checks: Consecutive unchanged samples needed
            sleep: Sleep function, injectable for tests

        Returns:
            True once the size was unchanged ``required_checks`` times in a
            row, False on timeout or when the file does not exist
        """
        if not file_path.exists():
            return False

        stable_count = 0
        last_size = -1
        max_iterations = max(1, int(timeout / interval))

        for _ in range(max_iterations):
            try:
                current_size = file_path.stat().st_size
            except OSError:
                current_size = -1

            if current_size == last_size and current_size >= 0:
                stable_count += 1
                if stable_count >= required_checks:
                    return True
            else:
                stable_count = 0
                last_size = current_size

            sleep(interval)

        return False

    @staticmethod
    def temp_sibling(file_path: Path) -> Path:
        """Scratch path next to ``file_path``, ``<name>.temp.<ext>``."""
        file_path = Path(file_path)
        return file_path.with_name(f"{file_path.stem}.temp{file_path.suffix}")

    @staticmethod
    def replace(source: Path, destination: Path) -> None:
        """Atomically move ``source`` over ``destination``."""
        os.replace(source, destination)
        logger.debug(f"🔁 Replaced {destination.name} with {source.name}")

    @staticmethod
    def safe_delete(file_path: Path) -> bool:
        """Safely delete a file and log the result.

        Returns:
            True if deletion was successful, False otherwise.
        """
        try:
            if file_path.exists():
                file_path.unlink()
                logger.debug(f"🗑️ Removed file: {file_path.name}")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Failed to remove {file_path.name}: {e}")
            return False
