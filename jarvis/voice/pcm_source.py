"""
Continuous PCM playback source for the speech relay.

discord.py pulls one 20ms frame at a time from its audio thread. The relay's outbound
worker pushes resampled 48kHz stereo PCM in from the event loop; while nothing is buffered
the source yields silence so the player never finishes on its own.
"""

import threading

import discord

from jarvis.config.logging_config import get_logger

logger = get_logger(__name__)

FRAME_BYTES = discord.opus.Encoder.FRAME_SIZE  # 3840: 20ms of 48kHz stereo s16le
SILENCE_FRAME = b"\x00" * FRAME_BYTES


class PcmStreamSource(discord.AudioSource):
    """Thread-safe byte buffer exposed as a never-ending discord AudioSource."""

    def __init__(self, max_buffer_bytes: int = FRAME_BYTES * 50 * 30):
        self.max_buffer_bytes = max_buffer_bytes
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def write(self, pcm: bytes) -> None:
        """Append 48kHz stereo PCM (called from the event loop)."""
        if not pcm:
            return
        with self._lock:
            overflow = len(self._buffer) + len(pcm) - self.max_buffer_bytes
            if overflow > 0:
                # Drop the oldest audio, keep frame alignment
                overflow += -overflow % 4
                del self._buffer[:overflow]
                logger.warning(f"⚠️ Speech playback buffer full, dropped {overflow} bytes")
            self._buffer.extend(pcm)

    def clear(self) -> None:
        """Discard everything buffered (barge-in)."""
        with self._lock:
            self._buffer.clear()

    @property
    def buffered_bytes(self) -> int:
        with self._lock:
            return len(self._buffer)

    def read(self) -> bytes:
        with self._lock:
            if not self._buffer:
                return SILENCE_FRAME
            frame = bytes(self._buffer[:FRAME_BYTES])
            del self._buffer[:FRAME_BYTES]

        if len(frame) < FRAME_BYTES:
            frame += b"\x00" * (FRAME_BYTES - len(frame))
        return frame

    def is_opus(self) -> bool:
        return False

    def cleanup(self) -> None:
        self.clear()
