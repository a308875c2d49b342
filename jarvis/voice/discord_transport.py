"""
Discord Voice Transport

VoiceTransport adapter over discord.py's voice client (with the discord-ext-voice-recv
extension for inbound audio).

State mapping:
- open() → CONNECTING, channel.connect() success → READY
- connect failure → DESTROYED
- bot removed from voice (after.channel is None) → DISCONNECTED
- bot moved between channels → CONNECTING, then READY once the client reconnects
- destroy() → DESTROYED

The bot forwards its own voice state updates through ``handle_voice_state_update``.
"""

import asyncio
from typing import Any, Optional

import discord
from discord.ext import voice_recv

from jarvis.config.logging_config import get_logger
from jarvis.voice.transport import AfterCallback, TransportState, VoiceTransport

logger = get_logger(__name__)


class DiscordVoiceTransport(VoiceTransport):
    """One discord.py voice connection for one guild."""

    def __init__(
        self,
        channel: discord.abc.Connectable,
        *,
        self_deaf: bool = False,
        connect_timeout: float = 20.0,
        move_ready_timeout: float = 10.0,
    ):
        super().__init__(session_key=channel.guild.id)
        self.channel = channel
        self.self_deaf = self_deaf
        self.connect_timeout = connect_timeout
        self.move_ready_timeout = move_ready_timeout
        self.voice_client: Optional[voice_recv.VoiceRecvClient] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._move_task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        if self._connect_task is not None:
            raise RuntimeError("Transport already opened")
        self._transition(TransportState.CONNECTING)
        self._connect_task = asyncio.create_task(self._connect())

    async def _connect(self) -> None:
        try:
            self.voice_client = await self.channel.connect(
                cls=voice_recv.VoiceRecvClient,
                timeout=self.connect_timeout,
                reconnect=True,
                self_deaf=self.self_deaf,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"❌ Failed to join voice channel '{getattr(self.channel, 'name', self.channel)}' "
                f"in guild {self.session_key}: {e}"
            )
            self._transition(TransportState.DESTROYED)
            return

        logger.info(f"✅ Joined voice channel '{self.channel.name}' in guild {self.session_key}")
        self._transition(TransportState.READY)

    def handle_voice_state_update(self, before: discord.VoiceState, after: discord.VoiceState) -> None:
        """Translate the bot's own voice state changes into transport states."""
        if self.is_destroyed:
            return

        if after.channel is None:
            logger.info(f"🔌 Bot left voice in guild {self.session_key}")
            self._transition(TransportState.DISCONNECTED)
            return

        if before.channel is not None and before.channel.id != after.channel.id:
            logger.info(
                f"🔀 Bot moved from '{before.channel.name}' to '{after.channel.name}' "
                f"in guild {self.session_key}"
            )
            self.channel = after.channel
            self._transition(TransportState.CONNECTING)
            if self._move_task is None or self._move_task.done():
                self._move_task = asyncio.create_task(self._await_reconnected())

    async def _await_reconnected(self, poll_interval: float = 0.1) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.move_ready_timeout
        while loop.time() < deadline:
            if self.is_destroyed:
                return
            if self.voice_client is not None and self.voice_client.is_connected():
                self._transition(TransportState.READY)
                return
            await asyncio.sleep(poll_interval)
        logger.warning(f"⚠️ Voice client in guild {self.session_key} did not reconnect after move")
        self._transition(TransportState.DISCONNECTED)

    async def destroy(self) -> None:
        if self.is_destroyed:
            return

        for task in (self._connect_task, self._move_task):
            if task is not None and not task.done():
                task.cancel()

        voice_client = self.voice_client
        self.voice_client = None
        if voice_client is not None:
            try:
                if voice_client.is_listening():
                    voice_client.stop_listening()
                await voice_client.disconnect(force=True)
            except Exception as e:
                logger.warning(f"⚠️ Error disconnecting voice client in guild {self.session_key}: {e}")

        self._transition(TransportState.DESTROYED)

    # ------------------------------------------------------------
    # Audio surface
    # ------------------------------------------------------------

    def play(self, source: Any, after: Optional[AfterCallback] = None) -> None:
        if self.voice_client is None:
            raise RuntimeError(f"No voice client for guild {self.session_key}")
        self.voice_client.play(source, after=after)

    def stop_playback(self) -> None:
        if self.voice_client is not None:
            self.voice_client.stop()

    def is_playing(self) -> bool:
        return self.voice_client is not None and self.voice_client.is_playing()

    def listen(self, sink: Any) -> None:
        if self.voice_client is None:
            raise RuntimeError(f"No voice client for guild {self.session_key}")
        self.voice_client.listen(sink)

    def stop_listening(self) -> None:
        if self.voice_client is not None and self.voice_client.is_listening():
            self.voice_client.stop_listening()
