"""Named pipe carrying live PCM audio into the encoder.

FFmpeg opens the FIFO as its second input. Opening the write end blocks until
the reader shows up, so the connection is made on a background thread and
audio written before then is dropped. The write end is non-blocking so a
reader that stops draining cannot hold up shutdown.
"""

import os
import select
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import BinaryIO, Optional

from screenrec.utils.exceptions import ConfigurationError, TransientIOError
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

WAIT_SLICE = 0.05
FINAL_FLUSH_TIMEOUT = 0.25


def fifo_supported() -> bool:
    return os.name == "posix" and hasattr(os, "mkfifo")


class PipeChannel:
    """Block-aligned writer over a POSIX FIFO."""

    def __init__(
        self,
        block_align: int,
        directory: Optional[Path] = None,
        name: str = "audio.pcm",
        write_timeout: float = 2.0,
    ) -> None:
        """Create the FIFO.

        Args:
            block_align: Bytes per PCM sample frame.
            directory: Where to create the FIFO, a fresh temp dir if None.
            name: FIFO file name.
            write_timeout: Longest wait for a reader that stopped draining.

        Raises:
            ConfigurationError: If the platform has no named pipes.
        """
        if not fifo_supported():
            raise ConfigurationError(
                "live_pipe audio needs POSIX named pipes, use file_merge on this "
                "platform"
            )
        if block_align <= 0:
            raise ConfigurationError(f"Invalid block alignment: {block_align}")

        self.block_align = block_align
        self.write_timeout = write_timeout
        self._owns_directory = directory is None
        self._directory = Path(directory or tempfile.mkdtemp(prefix="screenrec-"))
        self.path = self._directory / name
        os.mkfifo(self.path)

        self._lock = threading.Lock()
        self._sink: Optional[BinaryIO] = None
        self._remainder = b""
        self._closed = False
        self._closing = threading.Event()
        self._connect_thread: Optional[threading.Thread] = None
        self.bytes_written = 0

        logger.debug(f"Created audio FIFO at {self.path}")

    @property
    def connected(self) -> bool:
        return self._sink is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def remainder(self) -> bytes:
        """Unaligned bytes held back for the next write."""
        return self._remainder

    def start_connect(self) -> None:
        """Wait for the reader on a daemon thread."""
        self._connect_thread = threading.Thread(
            target=self._connect, name="audio-pipe-connect", daemon=True
        )
        self._connect_thread.start()

    def _connect(self) -> None:
        try:
            sink = open(self.path, "wb", buffering=0)
        except OSError as e:
            if not self._closed:
                logger.warning(f"⚠️ Audio pipe connection failed: {e}")
            return
        try:
            os.set_blocking(sink.fileno(), False)
        except OSError as e:
            logger.warning(f"⚠️ Audio pipe cannot be made non-blocking: {e}")
            sink.close()
            return
        self.attach(sink)

    def attach(self, sink: BinaryIO) -> None:
        """Bind the write end once the peer is reading."""
        with self._lock:
            if self._closed:
                sink.close()
                return
            self._sink = sink
        logger.info("🔗 Encoder connected to audio pipe")

    def write(self, data: bytes) -> int:
        """Write the aligned part of ``remainder + data``.

        A reader that stops draining blocks the write for at most
        ``write_timeout`` seconds, and flush_and_close() interrupts it.

        Returns:
            Bytes delivered to the peer.

        Raises:
            TransientIOError: If the channel is closed, the peer went away
                or stalled.
        """
        with self._lock:
            if self._closed or self._closing.is_set():
                raise TransientIOError("Audio pipe is closed")
            if self._sink is None:
                return 0

            buffer = self._remainder + bytes(data)
            usable = len(buffer) - len(buffer) % self.block_align
            self._remainder = buffer[usable:]
            if usable == 0:
                return 0

            self._write_locked(buffer[:usable])
            return usable

    def flush_and_close(self) -> None:
        """Pad the stream to a full frame, write it and signal EOF.

        Idempotent. Returns promptly even when a write is blocked on a
        stalled reader. Disconnect errors during the final write are logged.
        """
        self._closing.set()
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sink, self._sink = self._sink, None

            if sink is not None:
                final = self._remainder
                final += bytes(-(self.bytes_written + len(final)) % self.block_align)
                if final:
                    try:
                        self._write_to(sink, final, wait=FINAL_FLUSH_TIMEOUT)
                    except TransientIOError as e:
                        logger.warning(f"⚠️ Final audio flush failed: {e}")
            self._remainder = b""

        if sink is not None:
            try:
                sink.close()
            except OSError as e:
                logger.debug(f"Error closing audio pipe: {e}")
            logger.info(f"🔚 Audio pipe closed after {self.bytes_written} bytes")
        else:
            self._release_waiting_writer()

    def cleanup(self) -> None:
        """Close the channel and remove the FIFO."""
        self.flush_and_close()
        if self._connect_thread is not None:
            self._connect_thread.join(timeout=1.0)
        try:
            if self.path.exists():
                self.path.unlink()
            if self._owns_directory:
                shutil.rmtree(self._directory, ignore_errors=True)
        except OSError as e:
            logger.warning(f"⚠️ Failed to remove audio FIFO {self.path}: {e}")

    def _write_locked(self, payload: bytes) -> None:
        try:
            self._write_to(self._sink, payload)
        except TransientIOError:
            sink, self._sink = self._sink, None
            self._closed = True
            try:
                sink.close()
            except OSError:
                pass
            raise

    def _write_to(
        self, sink: BinaryIO, payload: bytes, wait: Optional[float] = None
    ) -> None:
        """Write all of ``payload`` to a possibly non-blocking sink.

        ``wait`` bounds the time spent without progress and ignores the
        closing flag; without it the bound is ``write_timeout`` and closing
        aborts the write.
        """
        final = wait is not None
        limit = wait if final else self.write_timeout
        fd = _fileno(sink)
        view = memoryview(payload)
        stalled_since: Optional[float] = None

        while view:
            try:
                written = sink.write(view)
            except BlockingIOError:
                written = None
            except (ValueError, OSError) as e:
                raise TransientIOError(f"Audio pipe write failed: {e}") from e

            if written:
                view = view[written:]
                self.bytes_written += written
                stalled_since = None
                continue

            now = time.monotonic()
            if stalled_since is None:
                stalled_since = now
            if not final and self._closing.is_set():
                raise TransientIOError(
                    f"Audio pipe closed with {len(view)} bytes unwritten"
                )
            if now - stalled_since >= limit:
                raise TransientIOError(f"Audio pipe reader stalled for {limit:.1f}s")

            if fd is None:
                time.sleep(WAIT_SLICE)
            else:
                select.select([], [fd], [], WAIT_SLICE)

    def _release_waiting_writer(self) -> None:
        # The connect thread blocks in open() until a reader appears
        if self._connect_thread is None or not self._connect_thread.is_alive():
            return
        try:
            fd = os.open(self.path, os.O_RDONLY | os.O_NONBLOCK)
            os.close(fd)
        except OSError as e:
            logger.debug(f"Could not release pipe connect thread: {e}")


def _fileno(sink: BinaryIO) -> Optional[int]:
    try:
        return sink.fileno()
    except (AttributeError, OSError, ValueError):
        return None
