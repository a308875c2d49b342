"""
PCM Resampler

Converts signed 16-bit little-endian PCM between the two layouts the speech relay needs:
- 44.1kHz mono (ElevenLabs agent output) → 48kHz stereo (Discord voice)
- 48kHz stereo (Discord receive) → 16kHz mono (ElevenLabs agent input)

Backed by PyAV's libswresample wrapper; numpy handles buffer conversion. Each call builds
its own resampler so no state leaks between frames or sessions.
"""

import asyncio
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional

import av
import numpy as np

from jarvis.config.logging_config import get_logger
from jarvis.types.errors import ResampleFailure, UnsupportedConversion

logger = get_logger(__name__)

BYTES_PER_SAMPLE = 2


@dataclass(frozen=True)
class PcmFormat:
    """s16le PCM layout"""
    sample_rate: int
    channels: int

    @property
    def frame_size(self) -> int:
        """Bytes per sample frame (one sample per channel)."""
        return BYTES_PER_SAMPLE * self.channels

    @property
    def layout(self) -> str:
        return "mono" if self.channels == 1 else "stereo"

    def bytes_per_ms(self) -> float:
        return self.sample_rate * self.frame_size / 1000.0

    def __str__(self) -> str:
        return f"{self.sample_rate}Hz/{self.layout}"


AGENT_OUTPUT_FORMAT = PcmFormat(sample_rate=44100, channels=1)
AGENT_INPUT_FORMAT = PcmFormat(sample_rate=16000, channels=1)
DISCORD_FORMAT = PcmFormat(sample_rate=48000, channels=2)

SUPPORTED_CONVERSIONS = frozenset({
    (AGENT_OUTPUT_FORMAT, DISCORD_FORMAT),
    (DISCORD_FORMAT, AGENT_INPUT_FORMAT),
})


def align_to_frames(data: bytes, fmt: PcmFormat) -> bytes:
    """Drop a trailing partial sample frame, if any."""
    remainder = len(data) % fmt.frame_size
    if remainder:
        logger.warning(
            f"⚠️ PCM buffer of {len(data)} bytes is not a multiple of {fmt.frame_size} "
            f"({fmt}), truncating {remainder} trailing bytes"
        )
        return data[:len(data) - remainder]
    return data


def resample(data: bytes, src: PcmFormat, dst: PcmFormat) -> bytes:
    """
    Resample one PCM buffer.

    Args:
        data: s16le PCM in ``src`` layout
        src: Input format
        dst: Output format

    Returns:
        s16le PCM in ``dst`` layout (empty for empty input)

    Raises:
        UnsupportedConversion: (src, dst) is not a supported direction
        ResampleFailure: PyAV rejected the buffer
    """
    if (src, dst) not in SUPPORTED_CONVERSIONS:
        raise UnsupportedConversion(f"Unsupported PCM conversion {src} -> {dst}")

    if not data:
        logger.debug(f"🔇 Empty buffer for {src} -> {dst}, nothing to resample")
        return b""

    data = align_to_frames(data, src)
    if not data:
        return b""

    try:
        samples = np.frombuffer(bytes(data), dtype="<i2").reshape(1, -1)
        frame = av.AudioFrame.from_ndarray(samples, format="s16", layout=src.layout)
        frame.sample_rate = src.sample_rate
        frame.pts = 0
        frame.time_base = Fraction(1, src.sample_rate)

        resampler = av.AudioResampler(format="s16", layout=dst.layout, rate=dst.sample_rate)
        chunks = [out.to_ndarray() for out in resampler.resample(frame)]
        # Flush whatever the filter is still holding
        chunks.extend(out.to_ndarray() for out in resampler.resample(None))
    except (av.error.FFmpegError, ValueError) as e:
        raise ResampleFailure(f"Resampling {src} -> {dst} failed: {e}") from e

    if not chunks:
        return b""

    pcm = np.concatenate([chunk.reshape(-1) for chunk in chunks]).astype("<i2")
    logger.trace(f"🔁 Resampled {len(data)} bytes {src} -> {pcm.nbytes} bytes {dst}")
    return pcm.tobytes()


class AudioResampler:
    """
    Stateless resampler with a bounded async entry point.

    The async variant runs the conversion on the default executor and waits at most
    ``timeout`` seconds; expiry is reported as ResampleFailure, never retried.
    """

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    def resample(self, data: bytes, src: PcmFormat, dst: PcmFormat) -> bytes:
        return resample(data, src, dst)

    async def resample_async(
        self,
        data: bytes,
        src: PcmFormat,
        dst: PcmFormat,
        timeout: Optional[float] = None,
    ) -> bytes:
        if (src, dst) not in SUPPORTED_CONVERSIONS:
            raise UnsupportedConversion(f"Unsupported PCM conversion {src} -> {dst}")
        if not data:
            return b""

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, resample, data, src, dst),
                timeout=timeout or self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ResampleFailure(
                f"Resampling {src} -> {dst} timed out after {timeout or self.timeout}s"
            ) from e
