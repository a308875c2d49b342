"""
Voice receive sink for the speech relay.

discord-ext-voice-recv calls ``write()`` from its router thread with decoded 48kHz stereo
PCM per speaking user. Frames are handed to the event loop with ``call_soon_threadsafe``;
the relay does the rest (resample, encode, send).
"""

import asyncio
from typing import Callable, Optional, Set

from discord.ext import voice_recv

from jarvis.config.logging_config import get_logger

logger = get_logger(__name__)


class SpeechAudioSink(voice_recv.AudioSink):
    """Forward decoded PCM from every non-bot speaker into one callback."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_pcm: Callable[[bytes], None],
        session_key: object = None,
    ):
        super().__init__()
        self.loop = loop
        self.on_pcm = on_pcm
        self.session_key = session_key
        self.speakers: Set[int] = set()
        self._closed = False

    def wants_opus(self) -> bool:
        """Return False to receive decoded PCM"""
        return False

    def write(self, user: Optional[object], data: voice_recv.VoiceData) -> None:
        if self._closed or user is None or getattr(user, "bot", False):
            return

        pcm = data.pcm
        if not pcm:
            return

        user_id = getattr(user, "id", None)
        if user_id not in self.speakers:
            self.speakers.add(user_id)
            logger.info(f"🎤 Relaying audio from user {user_id} in guild {self.session_key}")

        try:
            self.loop.call_soon_threadsafe(self.on_pcm, pcm)
        except RuntimeError:
            # Loop closed during shutdown
            self._closed = True

    def cleanup(self) -> None:
        logger.info(f"🧹 Cleaning up speech sink for guild {self.session_key}")
        self._closed = True
        self.speakers.clear()
