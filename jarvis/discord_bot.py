#!/usr/bin/env python3
"""
============================================================
Jarvis - Discord Voice Session Bot
Thin slash-command surface over the per-guild voice session engine:
- /play, /skip, /stop, /queue: music queue
- /volume, /bassboost, /clearfilters: live filters
- /talk: real-time conversation with the ElevenLabs agent
- /lock, /unlock: make the caller's voice channel private or public
- /leave: disconnect and tear the session down
============================================================
"""

import asyncio
import os
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv

from jarvis.config.logging_config import configure_logging, get_logger
from jarvis.config.voice import VoiceEngineConfig, get_voice_config
from jarvis.services.conversation_client import ConversationClient
from jarvis.services.playback_queue import FilterState, QueueItem
from jarvis.services.session_registry import SessionRegistry
from jarvis.services.voice_session import ClosedHandler, VoiceSession
from jarvis.types.errors import ConnectionRejected, ReasonCode, SocketFailure, VoiceEngineError
from jarvis.voice.connection import VoiceTarget
from jarvis.voice.discord_transport import DiscordVoiceTransport

# Load environment variables
load_dotenv()

# Configure logging with tiered system
configure_logging(default_level="INFO")
logger = get_logger(__name__)

# ============================================================
# USER MESSAGES
# ============================================================

REASON_MESSAGES: Dict[ReasonCode, str] = {
    ReasonCode.ALREADY_SPEAKING: "❌ I'm in a conversation right now. Use `/stop` first.",
    ReasonCode.MUSIC_PLAYING: "❌ Music is playing. Use `/stop` before `/talk`.",
    ReasonCode.ALREADY_IN_SPEECH: "❌ I'm already talking in this server.",
    ReasonCode.NO_TARGET: "❌ You must be in a voice channel to use this command!",
    ReasonCode.ALREADY_CONNECTED: "❌ I'm already connected in this server.",
    ReasonCode.NOT_CONNECTED: "❌ I'm not in a voice channel.",
    ReasonCode.TRANSPORT_TIMEOUT: "❌ Failed to join voice channel.",
    ReasonCode.SESSION_CLOSED: "❌ The voice session just ended, please try again.",
    ReasonCode.SOURCE_UNAVAILABLE: "❌ That track could not be played.",
    ReasonCode.SOCKET_TIMEOUT: "❌ The voice agent did not answer in time.",
    ReasonCode.SOCKET_CLOSED: "❌ Lost the connection to the voice agent.",
    ReasonCode.AGENT_NOT_CONFIGURED: "❌ No voice agent is configured.",
}
GENERIC_ERROR = "❌ Something went wrong."


def message_for(error: VoiceEngineError) -> str:
    return REASON_MESSAGES.get(error.reason, GENERIC_ERROR)


PERMISSION_ERROR = (
    "❌ Error: Make sure I have the correct permissions and my role is positioned above "
    "the voice channel in the server settings."
)


async def set_channel_privacy(channel: discord.VoiceChannel, everyone: discord.Role, private: bool) -> None:
    """Deny (or allow) @everyone connecting to ``channel``."""
    await channel.set_permissions(everyone, connect=not private)


def format_now_playing(item: QueueItem, filters: FilterState) -> str:
    line = f"🎵 Now playing **{item.title}**"
    if item.artist:
        line += f" by {item.artist}"
    if item.duration:
        line += f" ({item.duration})"
    if item.requested_by:
        line += f" - requested by {item.requested_by}"
    if filters.bassboost or filters.volume != 1.0:
        line += f"\n🎛️ volume {filters.volume:.0%}{' + bassboost' if filters.bassboost else ''}"
    return line


# ============================================================
# BOT
# ============================================================

class JarvisBot(commands.Bot):
    """discord.py bot owning the session registry."""

    def __init__(self, config: VoiceEngineConfig):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.voice_states = True

        super().__init__(command_prefix="!", intents=intents, help_command=None)
        self.config = config
        self.registry = SessionRegistry(self._create_session)
        # guild id → text channel for "now playing" / error notices
        self.announce_channels: Dict[int, discord.abc.Messageable] = {}

    # ------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------

    def _create_session(self, guild_id: int, on_closed: ClosedHandler) -> VoiceSession:
        config = self.config

        def transport_factory(target: VoiceTarget) -> DiscordVoiceTransport:
            return DiscordVoiceTransport(
                target.channel,
                self_deaf=target.self_deaf,
                connect_timeout=config.connect_ready_timeout_s,
            )

        def client_factory(**callbacks) -> ConversationClient:
            return ConversationClient(
                config.agent_url,
                timeout=config.agent_socket_timeout_s,
                session_key=guild_id,
                **callbacks,
            )

        async def on_track_start(item: QueueItem, filters: FilterState) -> None:
            await self._announce(guild_id, format_now_playing(item, filters))

        async def on_track_error(item: QueueItem, error: Exception) -> None:
            await self._announce(guild_id, f"⏭️ Skipping **{item.title}**: could not be played.")

        async def on_speech_error(error: SocketFailure) -> None:
            await self._announce(guild_id, message_for(error))

        return VoiceSession(
            guild_id,
            transport_factory=transport_factory,
            client_factory=client_factory,
            config=config,
            on_closed=on_closed,
            on_track_start=on_track_start,
            on_track_error=on_track_error,
            on_speech_error=on_speech_error,
        )

    async def _announce(self, guild_id: int, content: str) -> None:
        channel = self.announce_channels.get(guild_id)
        if channel is None:
            return
        try:
            await channel.send(content)
        except discord.HTTPException as e:
            logger.warning(f"⚠️ Failed to send message in guild {guild_id}: {e}")

    async def ensure_connected(self, interaction: discord.Interaction, self_deaf: bool = False) -> VoiceSession:
        """Session for the interaction's guild, joined to the caller's voice channel."""
        member = interaction.user
        channel = member.voice.channel if isinstance(member, discord.Member) and member.voice else None

        existing = self.registry.get(interaction.guild_id)
        if channel is None and (existing is None or existing.lifecycle.transport is None):
            raise ConnectionRejected(
                f"No voice channel for {member} in guild {interaction.guild_id}",
                reason=ReasonCode.NO_TARGET,
            )

        session = self.registry.get_or_create(interaction.guild_id)
        if interaction.channel is not None:
            self.announce_channels[interaction.guild_id] = interaction.channel

        if session.lifecycle.transport is None:
            await session.connect(VoiceTarget(
                guild_id=interaction.guild_id,
                channel=channel,
                requested_by=member.display_name,
                self_deaf=self_deaf,
            ))
        return session

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    async def setup_hook(self) -> None:
        register_commands(self)

    async def on_ready(self):
        logger.info(f"🤖 Jarvis connected as {self.user} (ID: {self.user.id})")
        for guild in self.guilds:
            logger.info(f"  📍 Connected to guild: {guild.name} (ID: {guild.id})")
        try:
            await self.tree.sync()
            logger.info("✅ Discord slash commands synced")
        except Exception as e:
            logger.error(f"❌ Failed to sync Discord commands: {e}", exc_info=True)

    async def on_voice_state_update(self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState):
        # Only the bot's own voice state drives the transport
        if self.user is None or member.id != self.user.id:
            return

        session = self.registry.get(member.guild.id)
        if session is None:
            return

        transport = session.lifecycle.transport
        if isinstance(transport, DiscordVoiceTransport):
            transport.handle_voice_state_update(before, after)

    async def close(self):
        await self.registry.shutdown()
        await super().close()


# ============================================================
# SLASH COMMANDS
# ============================================================

def register_commands(bot: JarvisBot) -> None:
    tree = bot.tree

    async def reply_error(interaction: discord.Interaction, error: VoiceEngineError) -> None:
        logger.info(f"🚫 /{interaction.command.name if interaction.command else '?'} rejected: {error.reason.value}")
        await interaction.followup.send(message_for(error), ephemeral=True)

    def session_for(interaction: discord.Interaction) -> Optional[VoiceSession]:
        return bot.registry.get(interaction.guild_id)

    @tree.command(name="play", description="Play a track from a direct media URL")
    @app_commands.describe(url="Playable media URL", title="Display title")
    async def play(interaction: discord.Interaction, url: str, title: Optional[str] = None):
        await interaction.response.defer(thinking=True)
        try:
            session = await bot.ensure_connected(interaction, self_deaf=True)
            item = QueueItem(url=url, title=title or url, requested_by=interaction.user.display_name)
            position = await session.queue.enqueue(item)
        except VoiceEngineError as e:
            await reply_error(interaction, e)
            return

        if position:
            await interaction.followup.send(f"➕ Added **{item.title}** to the queue (position {position})")
        else:
            await interaction.followup.send(f"🎵 Adding **{item.title}**...")

    @tree.command(name="skip", description="Skip the current track")
    async def skip(interaction: discord.Interaction):
        session = session_for(interaction)
        if session is None or not session.queue.skip():
            await interaction.response.send_message("❌ Nothing is playing.", ephemeral=True)
            return
        await interaction.response.send_message("⏭️ Skipped.")

    @tree.command(name="stop", description="Stop music or conversation and clear the queue")
    async def stop(interaction: discord.Interaction):
        session = session_for(interaction)
        if session is None:
            await interaction.response.send_message(REASON_MESSAGES[ReasonCode.NOT_CONNECTED], ephemeral=True)
            return
        await interaction.response.defer()
        await session.clear()
        await interaction.followup.send("⏹️ Stopped.")

    @tree.command(name="volume", description="Set playback volume (0-200%)")
    @app_commands.describe(percent="Volume in percent")
    async def volume(interaction: discord.Interaction, percent: app_commands.Range[int, 0, 200]):
        session = session_for(interaction)
        if session is None:
            await interaction.response.send_message(REASON_MESSAGES[ReasonCode.NOT_CONNECTED], ephemeral=True)
            return
        session.queue.set_volume(percent / 100)
        await interaction.response.send_message(f"🔊 Volume set to {session.queue.filters.volume:.0%}")

    @tree.command(name="bassboost", description="Toggle bassboost")
    async def bassboost(interaction: discord.Interaction):
        session = session_for(interaction)
        if session is None:
            await interaction.response.send_message(REASON_MESSAGES[ReasonCode.NOT_CONNECTED], ephemeral=True)
            return
        enabled = session.queue.toggle_bassboost()
        await interaction.response.send_message(f"🎛️ Bassboost {'enabled' if enabled else 'disabled'}")

    @tree.command(name="clearfilters", description="Reset volume and bassboost")
    async def clearfilters(interaction: discord.Interaction):
        session = session_for(interaction)
        if session is None:
            await interaction.response.send_message(REASON_MESSAGES[ReasonCode.NOT_CONNECTED], ephemeral=True)
            return
        session.queue.clear_filters()
        await interaction.response.send_message("🎛️ Filters cleared")

    @tree.command(name="queue", description="Show the current queue")
    async def queue(interaction: discord.Interaction):
        session = session_for(interaction)
        current = session.queue.current_track() if session else None
        if current is None:
            await interaction.response.send_message("📭 The queue is empty.", ephemeral=True)
            return

        lines = [format_now_playing(current, session.queue.filters)]
        for index, item in enumerate(session.queue.snapshot_queue()[:10], start=1):
            lines.append(f"{index}. {item.title}" + (f" ({item.duration})" if item.duration else ""))
        await interaction.response.send_message("\n".join(lines))

    @tree.command(name="talk", description="Talk with the voice agent")
    async def talk(interaction: discord.Interaction):
        await interaction.response.defer(thinking=True)
        try:
            session = await bot.ensure_connected(interaction)
            await session.begin_speech()
        except VoiceEngineError as e:
            await reply_error(interaction, e)
            return
        await interaction.followup.send("🗣️ I'm listening.")

    async def change_privacy(interaction: discord.Interaction, private: bool) -> None:
        member = interaction.user
        channel = member.voice.channel if isinstance(member, discord.Member) and member.voice else None
        if channel is None:
            await interaction.response.send_message(REASON_MESSAGES[ReasonCode.NO_TARGET], ephemeral=True)
            return

        me = interaction.guild.me if interaction.guild else None
        if me is None or not me.guild_permissions.manage_channels:
            await interaction.response.send_message(
                "❌ I don't have permission to manage channels. Please check my role permissions.",
                ephemeral=True,
            )
            return

        try:
            await set_channel_privacy(channel, interaction.guild.default_role, private)
        except discord.HTTPException as e:
            logger.error(f"❌ Failed to {'lock' if private else 'unlock'} '{channel.name}' in guild {interaction.guild_id}: {e}")
            await interaction.response.send_message(PERMISSION_ERROR, ephemeral=True)
            return

        logger.info(f"{'🔒' if private else '🔓'} '{channel.name}' in guild {interaction.guild_id} is now {'private' if private else 'public'}")
        await interaction.response.send_message(
            "🔒 Voice channel is now private" if private else "🔓 Voice channel is now public",
            ephemeral=True,
        )

    @tree.command(name="lock", description="Make your current voice channel private")
    async def lock(interaction: discord.Interaction):
        await change_privacy(interaction, private=True)

    @tree.command(name="unlock", description="Make your current voice channel public")
    async def unlock(interaction: discord.Interaction):
        await change_privacy(interaction, private=False)

    @tree.command(name="leave", description="Leave the voice channel")
    async def leave(interaction: discord.Interaction):
        session = session_for(interaction)
        if session is None:
            await interaction.response.send_message(REASON_MESSAGES[ReasonCode.NOT_CONNECTED], ephemeral=True)
            return
        await interaction.response.defer()
        await session.leave()
        bot.announce_channels.pop(interaction.guild_id, None)
        await interaction.followup.send("👋 Left the voice channel.")


# ============================================================
# ENTRY POINT
# ============================================================

async def main() -> None:
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.error("❌ DISCORD_BOT_TOKEN not set in environment")
        raise SystemExit(1)

    bot = JarvisBot(get_voice_config())
    async with bot:
        await bot.start(token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
