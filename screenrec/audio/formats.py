"""Audio format descriptors and conversion to canonical 16-bit PCM.

The capture side hands over whatever the loopback device produces, usually
32-bit float at the device rate. Everything written to disk or to the encoder
pipe is interleaved signed 16-bit little-endian PCM in the target format.
"""

from dataclasses import dataclass
from typing import Union

import numpy as np

from screenrec.utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class AudioFormat:
    """Sample rate, channel count and sample encoding of a PCM stream."""

    sample_rate: int
    channels: int
    bits_per_sample: int = 16
    is_float: bool = False

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ConfigurationError(f"Invalid sample rate: {self.sample_rate}")
        if self.channels <= 0:
            raise ConfigurationError(f"Invalid channel count: {self.channels}")
        if self.bits_per_sample not in (16, 32) or (
            self.is_float and self.bits_per_sample != 32
        ):
            raise ConfigurationError(
                f"Unsupported sample encoding: {self.bits_per_sample} bit"
                f"{' float' if self.is_float else ''}"
            )

    @property
    def bytes_per_sample(self) -> int:
        return self.bits_per_sample // 8

    @property
    def block_align(self) -> int:
        """Bytes per sample frame (all channels)."""
        return self.channels * self.bytes_per_sample

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.block_align

    @property
    def dtype(self) -> np.dtype:
        if self.is_float:
            return np.dtype("<f4")
        return np.dtype("<i2") if self.bits_per_sample == 16 else np.dtype("<i4")

    @property
    def is_canonical(self) -> bool:
        return self.bits_per_sample == 16 and not self.is_float

    def duration_of(self, num_bytes: int) -> float:
        """Seconds of audio held by ``num_bytes`` of this format."""
        return num_bytes / self.bytes_per_second

    def describe(self) -> str:
        kind = "float" if self.is_float else "bit"
        return f"{self.sample_rate}Hz, {self.bits_per_sample} {kind}, {self.channels}ch"


class AudioFormatConverter:
    """Converts capture blocks into the canonical target format.

    Resampling keeps its phase across calls, so one converter serves one
    continuous stream and the output length tracks the input duration to
    within a frame.
    """

    def __init__(self, source: AudioFormat, target: AudioFormat) -> None:
        if not target.is_canonical:
            raise ConfigurationError(
                f"Target format must be 16-bit PCM, got {target.describe()}"
            )
        self.source = source
        self.target = target
        self.reset()

    def reset(self) -> None:
        """Forget the resampling phase carried between blocks."""
        self._source_frames = 0
        self._target_frames = 0

    @property
    def is_passthrough(self) -> bool:
        return self.source == self.target

    def convert(self, block: Union[np.ndarray, bytes]) -> bytes:
        """Convert one capture block.

        Args:
            block: ``(frames, channels)`` array or raw interleaved bytes in
                the source format.

        Returns:
            Interleaved 16-bit PCM, always a multiple of the target
            ``block_align``.
        """
        if isinstance(block, (bytes, bytearray, memoryview)):
            if self.is_passthrough:
                usable = len(block) - len(block) % self.target.block_align
                return bytes(block[:usable])
            frames = self._frames_from_bytes(bytes(block))
        else:
            frames = np.asarray(block)
            if frames.ndim == 1:
                frames = frames.reshape(-1, self.source.channels)
            if self.is_passthrough and frames.dtype == self.target.dtype:
                return frames.astype("<i2", copy=False).tobytes()

        if frames.shape[0] == 0:
            return b""

        samples = self._to_int16(frames)
        samples = self._map_channels(samples)
        if self.source.sample_rate != self.target.sample_rate:
            samples = self._resample(samples)

        return np.ascontiguousarray(samples, dtype="<i2").tobytes()

    def _frames_from_bytes(self, data: bytes) -> np.ndarray:
        usable = len(data) - len(data) % self.source.block_align
        flat = np.frombuffer(data[:usable], dtype=self.source.dtype)
        return flat.reshape(-1, self.source.channels)

    def _to_int16(self, frames: np.ndarray) -> np.ndarray:
        if np.issubdtype(frames.dtype, np.floating):
            clipped = np.clip(frames, -1.0, 1.0)
            return (clipped * 32767.0).astype(np.int16)
        if frames.dtype == np.int16:
            return frames
        if frames.dtype == np.int32:
            return (frames >> 16).astype(np.int16)
        raise ConfigurationError(f"Unsupported capture sample type: {frames.dtype}")

    def _map_channels(self, samples: np.ndarray) -> np.ndarray:
        src_ch = samples.shape[1]
        dst_ch = self.target.channels

        if src_ch == dst_ch:
            return samples
        if dst_ch == 1:
            # Average in int32 to avoid overflow
            return samples.astype(np.int32).mean(axis=1, keepdims=True).astype(
                np.int16
            )
        if src_ch == 1:
            return np.repeat(samples, dst_ch, axis=1)
        if src_ch > dst_ch:
            return samples[:, :dst_ch]

        padding = np.repeat(samples[:, -1:], dst_ch - src_ch, axis=1)
        return np.concatenate([samples, padding], axis=1)

    def _resample(self, samples: np.ndarray) -> np.ndarray:
        # Frame counts come from running totals so rounding never accumulates
        src_rate = self.source.sample_rate
        dst_rate = self.target.sample_rate
        n_in = samples.shape[0]

        consumed = self._source_frames
        total = consumed + n_in
        first_out = self._target_frames
        n_out = total * dst_rate // src_rate - first_out

        self._source_frames = total
        self._target_frames += n_out

        if n_out <= 0:
            return np.zeros((0, samples.shape[1]), dtype=np.int16)

        # Positions fall in [0, n_in), past the last frame they hold its value
        index = np.arange(n_in)
        positions = (
            np.arange(first_out, first_out + n_out, dtype=np.float64)
            * src_rate
            / dst_rate
            - consumed
        )
        channels = [
            np.interp(positions, index, samples[:, ch].astype(np.float64))
            for ch in range(samples.shape[1])
        ]
        resampled = np.stack(channels, axis=1)
        return np.clip(np.round(resampled), -32768, 32767).astype(np.int16)
