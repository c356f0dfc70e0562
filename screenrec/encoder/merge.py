"""Post-recording audio merge using FFmpeg.

Used by the ``file_merge`` audio policy: the screen is encoded video-only and
the persisted WAV is muxed in afterwards. The video stream is copied, the
audio is encoded to AAC, and the result replaces the original only when the
second FFmpeg run succeeds.
"""

import subprocess
from pathlib import Path
from typing import List, Optional, Union

import ffmpeg
import soundfile as sf

from screenrec.utils.exceptions import MergeFailed, TimeoutExceeded
from screenrec.utils.file_manager import FileManager
from screenrec.utils.logger import setup_logger

logger = setup_logger(__name__)

MP4_SIGNATURE = b"ftyp"


def has_ftyp_signature(video_path: Path) -> bool:
    """Cheap MP4 check: ``ftyp`` box type at bytes 4-8."""
    try:
        with open(video_path, "rb") as f:
            header = f.read(8)
    except OSError:
        return False
    return len(header) == 8 and header[4:8] == MP4_SIGNATURE


def audio_has_content(audio_path: Optional[Path]) -> bool:
    """Whether an audio intermediate holds at least one frame."""
    if audio_path is None or not audio_path.exists():
        return False
    if FileManager.file_size(audio_path) == 0:
        return False

    try:
        info = sf.info(str(audio_path))
    except RuntimeError as e:
        # Let FFmpeg decide on files libsndfile cannot parse
        logger.warning(f"⚠️ Could not read audio header of {audio_path.name}: {e}")
        return True
    return info.frames > 0


class VideoAudioMerger:
    """Muxes a persisted WAV into a finished screen recording."""

    def __init__(
        self,
        ffmpeg_path: Union[str, List[str]],
        ffprobe_path: Optional[str],
        audio_bitrate_kbps: int = 192,
        merge_timeout: float = 900.0,
        stable_timeout: float = 60.0,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.audio_bitrate_kbps = audio_bitrate_kbps
        self.merge_timeout = merge_timeout
        self.stable_timeout = stable_timeout

    def validate_output(self, video_path: Path) -> bool:
        """Check that the encoder produced a readable video file.

        Probes for a video stream first and falls back to the container
        signature when ffprobe is unavailable or rejects the file.
        """
        if not video_path.exists() or FileManager.file_size(video_path) == 0:
            logger.warning(f"🟡 Video output missing or empty: {video_path}")
            return False

        if self.ffprobe_path:
            try:
                probe = ffmpeg.probe(
                    str(video_path),
                    cmd=self.ffprobe_path,
                    select_streams="v:0",
                )
                if probe.get("streams"):
                    return True
                logger.warning(f"🟡 No video stream in {video_path.name}")
            except ffmpeg.Error as e:
                stderr = e.stderr.decode(errors="replace") if e.stderr else ""
                logger.warning(f"🟡 ffprobe failed on {video_path.name}: {stderr}")
            except OSError as e:
                logger.warning(f"🟡 ffprobe unavailable: {e}")

        valid = has_ftyp_signature(video_path)
        logger.debug(f"MP4 signature check for {video_path.name}: {valid}")
        return valid

    def merge(self, video_path: Path, audio_path: Optional[Path]) -> bool:
        """Run the merge protocol.

        Args:
            video_path: Finished video-only recording, replaced on success.
            audio_path: Persisted WAV intermediate.

        Returns:
            True if audio was merged, False if there was nothing to merge.

        Raises:
            MergeFailed: Validation, FFmpeg exit or timeout failure. The
                original video is left in place.
        """
        if not audio_has_content(audio_path):
            logger.info("🔇 No recorded audio, keeping video-only output")
            return False

        if not FileManager.wait_for_stable_size(
            video_path, timeout=self.stable_timeout
        ):
            logger.warning(
                f"🟡 {video_path.name} size did not settle within "
                f"{self.stable_timeout:.0f}s, merging anyway"
            )

        if not self.validate_output(video_path):
            raise MergeFailed(f"{video_path.name} is not a complete video file")

        temp_path = FileManager.temp_sibling(video_path)
        logger.info(f"🔄 Merging {audio_path.name} into {video_path.name}")

        try:
            self._run_merge(video_path, audio_path, temp_path)
        except (MergeFailed, TimeoutExceeded) as e:
            FileManager.safe_delete(temp_path)
            if isinstance(e, TimeoutExceeded):
                raise MergeFailed(str(e)) from e
            raise

        if FileManager.file_size(temp_path) == 0:
            FileManager.safe_delete(temp_path)
            raise MergeFailed("Merged output is empty")

        try:
            FileManager.replace(temp_path, video_path)
        except OSError as e:
            FileManager.safe_delete(temp_path)
            raise MergeFailed(f"Could not replace {video_path.name}: {e}") from e

        logger.info(f"✅ Audio merged into {video_path.name}")
        return True

    def _run_merge(self, video_path: Path, audio_path: Path, temp_path: Path) -> None:
        video_in = ffmpeg.input(str(video_path))
        audio_in = ffmpeg.input(str(audio_path))
        stream = ffmpeg.output(
            video_in["v:0"],
            audio_in["a:0"],
            str(temp_path),
            vcodec="copy",
            acodec="aac",
            audio_bitrate=f"{self.audio_bitrate_kbps}k",
            ac=2,
            shortest=None,
            hide_banner=None,
            loglevel="warning",
            y=None,
        )

        try:
            process = stream.run_async(
                cmd=self.ffmpeg_path, pipe_stdout=True, pipe_stderr=True
            )
        except OSError as e:
            raise MergeFailed(f"Could not start FFmpeg for merge: {e}") from e

        try:
            _, stderr = process.communicate(timeout=self.merge_timeout)
        except subprocess.TimeoutExpired:
            logger.error(f"🛑 Merge exceeded {self.merge_timeout:.0f}s, killing FFmpeg")
            try:
                process.kill()
                process.communicate(timeout=5)
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning(f"⚠️ Could not reap merge process: {e}")
            raise TimeoutExceeded("audio merge", self.merge_timeout)

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip() if stderr else ""
            logger.error(f"🛑 Merge failed with exit code {process.returncode}")
            if message:
                logger.error(f"FFmpeg: {message}")
            raise MergeFailed(f"FFmpeg merge exited with code {process.returncode}")
