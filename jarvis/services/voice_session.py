"""
Voice Session

Everything one guild owns: activity state, connection lifecycle, playback queue and speech
relay. Teardown (``_on_lost``) is the single place all of them are released, and it runs at
most once; it is reached from a lost transport, an explicit leave, the idle timer, or a
fatal playback failure.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from jarvis.config.logging_config import get_logger
from jarvis.config.voice import VoiceEngineConfig, get_voice_config
from jarvis.services.playback_queue import (
    PlaybackQueueEngine,
    SourceBuilder,
    TrackErrorHandler,
    TrackStartHandler,
    build_ffmpeg_source,
)
from jarvis.services.speech_relay import ClientFactory, SpeechRelay, TerminalErrorHandler, TranscriptHandler
from jarvis.types.errors import ConnectionRejected, ReasonCode, SocketFailure
from jarvis.voice.activity import ActivityState, ActivityStateMachine
from jarvis.voice.connection import ConnectionLifecycle, TransportFactory, VoiceTarget
from jarvis.voice.resampler import AudioResampler
from jarvis.voice.transport import VoiceTransport

logger = get_logger(__name__)

ClosedHandler = Callable[["VoiceSession"], None]


class VoiceSession:
    """One guild's voice session."""

    def __init__(
        self,
        key: object,
        *,
        transport_factory: TransportFactory,
        client_factory: ClientFactory,
        config: Optional[VoiceEngineConfig] = None,
        source_builder: SourceBuilder = build_ffmpeg_source,
        resampler: Optional[AudioResampler] = None,
        on_closed: Optional[ClosedHandler] = None,
        on_track_start: Optional[TrackStartHandler] = None,
        on_track_error: Optional[TrackErrorHandler] = None,
        on_speech_error: Optional[TerminalErrorHandler] = None,
        on_transcript: Optional[TranscriptHandler] = None,
    ):
        self.key = key
        self.config = config or get_voice_config()
        self.on_closed = on_closed
        self.on_speech_error = on_speech_error

        self.closed = False
        self.close_reason: Optional[str] = None
        self.closed_event = asyncio.Event()

        self.activity = ActivityStateMachine(key)
        self.lifecycle = ConnectionLifecycle(
            key,
            transport_factory,
            on_lost=self._on_lost,
            ready_timeout=self.config.connect_ready_timeout_s,
            reconnect_window=self.config.reconnect_window_s,
        )
        self.queue = PlaybackQueueEngine(
            key,
            self.activity,
            self.lifecycle,
            config=self.config,
            source_builder=source_builder,
            on_track_start=on_track_start,
            on_track_error=on_track_error,
            on_idle=self._on_idle,
            on_fatal=self._on_fatal,
        )
        self.speech = SpeechRelay(
            key,
            self.activity,
            self.lifecycle,
            client_factory=client_factory,
            config=self.config,
            resampler=resampler,
            on_terminal_error=self._on_speech_terminal_error,
            on_stopped=self._on_speech_stopped,
            on_transcript=on_transcript,
        )

    def __repr__(self) -> str:
        return f"VoiceSession(key={self.key!r}, activity={self.activity.current().value}, closed={self.closed})"

    # ------------------------------------------------------------
    # Command surface
    # ------------------------------------------------------------

    async def connect(self, target: Optional[VoiceTarget]) -> VoiceTransport:
        self._ensure_open()
        transport = await self.lifecycle.connect(target)
        # Nothing queued yet: start the idle countdown
        await self.queue.process_next()
        return transport

    async def begin_speech(self) -> None:
        """
        Switch the session into speech mode and start the relay.

        Raises:
            ConnectionRejected: not connected or session closed
            AdmissionRejected: music is playing or speech already active
            SocketFailure: AI socket could not be opened
        """
        self._ensure_open()
        if not self.lifecycle.is_ready:
            raise ConnectionRejected(f"Not connected in guild {self.key}", reason=ReasonCode.NOT_CONNECTED)

        self.activity.try_enter(ActivityState.SPEECH).raise_for_rejection()
        self.queue.cancel_idle_timer()

        try:
            await self.speech.start()
        except Exception:
            self.activity.clear()
            if not self.closed:
                await self.queue.process_next()
            raise

    async def clear(self) -> None:
        """Stop whatever is producing audio and return to IDLE without leaving."""
        self._ensure_open()
        await self.speech.stop()
        await self.queue.stop()
        self.activity.clear()

    async def leave(self) -> None:
        """Disconnect and tear the session down; returns once teardown has finished."""
        if self.closed:
            return
        if await self.lifecycle.disconnect():
            if self.lifecycle.lost_task is not None:
                await self.lifecycle.lost_task
        if not self.closed:
            await self._on_lost("left")

    async def wait_closed(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self.closed_event.wait(), timeout=timeout)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self.closed:
            raise ConnectionRejected(f"Session for guild {self.key} is closed", reason=ReasonCode.SESSION_CLOSED)

    async def _on_lost(self, reason: str) -> None:
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        logger.info(f"🧹 Tearing down voice session for guild {self.key} ({reason})")

        try:
            self.queue.shutdown()
            await self.speech.stop()
            self.activity.clear()
            await self.lifecycle.disconnect()
        except Exception as e:
            logger.error(f"❌ Error during teardown of guild {self.key}: {e}", exc_info=True)
        finally:
            if self.on_closed is not None:
                self.on_closed(self)
            self.closed_event.set()

        logger.info(f"✅ Voice session for guild {self.key} closed")

    async def _on_idle(self) -> None:
        await self._shutdown_transport("idle timeout")

    async def _on_fatal(self, error: Exception) -> None:
        await self._shutdown_transport(f"playback failure: {error}")

    async def _shutdown_transport(self, reason: str) -> None:
        logger.info(f"👋 Leaving voice in guild {self.key}: {reason}")
        if not await self.lifecycle.disconnect():
            await self._on_lost(reason)

    async def _on_speech_stopped(self) -> None:
        if not self.closed:
            await self.queue.process_next()

    async def _on_speech_terminal_error(self, error: SocketFailure) -> None:
        logger.error(f"❌ Speech relay failed in guild {self.key}: {error}")
        if self.on_speech_error is not None:
            await self.on_speech_error(error)
