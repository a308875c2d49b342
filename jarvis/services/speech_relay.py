"""
Speech Relay

Bidirectional bridge between a guild's voice channel and the conversational AI:

    Discord mic (48kHz stereo) → inbound queue → resample 16kHz mono → user_audio_chunk
    agent audio (44.1kHz mono) → outbound queue → resample 48kHz stereo → PcmStreamSource

Both directions are bounded asyncio queues filled with put_nowait (full = drop frame) and
drained by exactly one worker each, so ordering holds per direction and the outbound worker
is the only writer to the playback sink.

Barge-in (``interruption`` event) drains queued agent audio and clears the sink buffer.
A socket dropped mid-conversation gets one bounded reconnect; if that fails the relay stops
and the failure is reported through ``on_terminal_error``.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from jarvis.config.logging_config import get_logger
from jarvis.config.voice import VoiceEngineConfig, get_voice_config
from jarvis.services.conversation_client import (
    AgentResponseEvent,
    AudioEvent,
    ConversationClient,
    ConversationInitiationMetadataEvent,
    ErrorEvent,
    InterruptionEvent,
    UserTranscriptEvent,
)
from jarvis.types.errors import (
    AdmissionRejected,
    ConnectionRejected,
    ReasonCode,
    ResampleFailure,
    SocketFailure,
)
from jarvis.utils.retry import retry_async
from jarvis.voice.activity import ActivityStateMachine
from jarvis.voice.connection import ConnectionLifecycle
from jarvis.voice.pcm_source import PcmStreamSource
from jarvis.voice.receiver import SpeechAudioSink
from jarvis.voice.resampler import (
    AGENT_INPUT_FORMAT,
    AGENT_OUTPUT_FORMAT,
    DISCORD_FORMAT,
    AudioResampler,
    PcmFormat,
)

logger = get_logger(__name__)

EXPECTED_AGENT_OUTPUT = "pcm_44100"

# ClientFactory(on_event=..., on_closed=...) -> ConversationClient
ClientFactory = Callable[..., ConversationClient]
TerminalErrorHandler = Callable[[SocketFailure], Awaitable[None]]
StoppedHandler = Callable[[], Awaitable[None]]
TranscriptHandler = Callable[[str, str], Awaitable[None]]


class SpeechRelay:
    """
    Speech mode for one session.

    Example usage:
        relay = SpeechRelay(guild_id, activity, lifecycle, client_factory=make_client)
        activity.try_enter(ActivityState.SPEECH).raise_for_rejection()
        await relay.start()
        ...
        await relay.stop()
    """

    def __init__(
        self,
        session_key: object,
        activity: ActivityStateMachine,
        lifecycle: ConnectionLifecycle,
        *,
        client_factory: ClientFactory,
        config: Optional[VoiceEngineConfig] = None,
        resampler: Optional[AudioResampler] = None,
        on_terminal_error: Optional[TerminalErrorHandler] = None,
        on_stopped: Optional[StoppedHandler] = None,
        on_transcript: Optional[TranscriptHandler] = None,
    ):
        self.session_key = session_key
        self.activity = activity
        self.lifecycle = lifecycle
        self.client_factory = client_factory
        self.config = config or get_voice_config()
        self.resampler = resampler or AudioResampler(timeout=self.config.resample_timeout_s)
        self.on_terminal_error = on_terminal_error
        self.on_stopped = on_stopped
        self.on_transcript = on_transcript

        self.active = False
        self.client: Optional[ConversationClient] = None
        self.sink: Optional[PcmStreamSource] = None
        self.receiver: Optional[SpeechAudioSink] = None

        self._inbound: Optional[asyncio.Queue] = None
        self._outbound: Optional[asyncio.Queue] = None
        self._workers: list = []
        self._stopping = False

        self.frames_dropped = 0
        self._interruptions = 0

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        """
        Open the AI socket and start relaying.

        Raises:
            AdmissionRejected: activity is not SPEECH, or the relay is already running
            SocketFailure: the socket could not be opened in time
        """
        if not self.activity.is_speech():
            raise AdmissionRejected(
                f"Speech relay started without SPEECH activity in guild {self.session_key}",
                reason=ReasonCode.NOT_ADMITTED,
            )
        if self.active:
            raise AdmissionRejected(reason=ReasonCode.ALREADY_IN_SPEECH)

        transport = self.lifecycle.transport
        if transport is None or transport.is_destroyed:
            raise ConnectionRejected(f"No voice transport in guild {self.session_key}", reason=ReasonCode.NOT_CONNECTED)

        self.client = await self._open_client()

        size = self.config.speech_queue_size
        self._inbound = asyncio.Queue(maxsize=size)
        self._outbound = asyncio.Queue(maxsize=size)

        self.sink = PcmStreamSource()
        self.receiver = SpeechAudioSink(asyncio.get_running_loop(), self.on_inbound_audio, self.session_key)
        try:
            if transport.is_playing():
                transport.stop_playback()
            transport.play(self.sink)
            transport.listen(self.receiver)
        except Exception:
            await self.client.close()
            self.client = None
            self.sink = None
            self.receiver = None
            raise

        self.active = True
        self._workers = [
            asyncio.create_task(self._inbound_worker()),
            asyncio.create_task(self._outbound_worker()),
        ]
        logger.info(f"🗣️ Speech relay started in guild {self.session_key}")

    async def stop(self) -> None:
        """Close the socket, drop queued audio, release the sink and go IDLE. Idempotent."""
        if not self.active or self._stopping:
            return
        self._stopping = True
        try:
            current = asyncio.current_task()
            workers = [w for w in self._workers if w is not current]
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self._workers = []

            if self.client is not None:
                await self.client.close()
                self.client = None

            for queue in (self._inbound, self._outbound):
                self._drain(queue)

            transport = self.lifecycle.transport
            if transport is not None and not transport.is_destroyed:
                transport.stop_listening()
                transport.stop_playback()
            if self.sink is not None:
                self.sink.clear()
            self.sink = None
            self.receiver = None
        finally:
            self.active = False
            self._stopping = False
            if self.activity.is_speech():
                self.activity.clear()

        logger.info(f"🔇 Speech relay stopped in guild {self.session_key} (dropped={self.frames_dropped})")
        if self.on_stopped is not None:
            await self.on_stopped()

    # ------------------------------------------------------------
    # Inbound (mic → AI)
    # ------------------------------------------------------------

    def on_inbound_audio(self, pcm: bytes) -> None:
        """Queue one 48kHz stereo frame from the voice receiver (event loop thread)."""
        if not self.active or self._stopping:
            return
        if not pcm or len(pcm) % DISCORD_FORMAT.frame_size:
            logger.debug(f"🔇 Dropping malformed inbound frame ({len(pcm) if pcm else 0} bytes) in guild {self.session_key}")
            return
        self._offer(self._inbound, pcm, "inbound")

    async def _inbound_worker(self) -> None:
        while True:
            pcm = await self._inbound.get()
            mono = await self._convert(pcm, DISCORD_FORMAT, AGENT_INPUT_FORMAT)
            if mono and self.client is not None:
                await self.client.send_audio(mono)

    # ------------------------------------------------------------
    # Outbound (AI → speaker)
    # ------------------------------------------------------------

    async def _on_event(self, event) -> None:
        if isinstance(event, AudioEvent):
            pcm = event.pcm()
            if not pcm or len(pcm) % AGENT_OUTPUT_FORMAT.frame_size:
                logger.debug(f"🔇 Dropping malformed agent frame ({len(pcm)} bytes) in guild {self.session_key}")
                return
            self._offer(self._outbound, pcm, "outbound")

        elif isinstance(event, InterruptionEvent):
            self._interruptions += 1
            drained = self._drain(self._outbound)
            if self.sink is not None:
                self.sink.clear()
            logger.info(f"✋ Agent interrupted in guild {self.session_key} (dropped {drained} queued frames)")

        elif isinstance(event, UserTranscriptEvent):
            text = event.user_transcription_event.user_transcript
            logger.info(f"📝 User (guild={self.session_key}): \"{text}\"")
            await self._transcript("user", text)

        elif isinstance(event, AgentResponseEvent):
            text = event.agent_response_event.agent_response
            logger.info(f"🤖 Agent (guild={self.session_key}): \"{text}\"")
            await self._transcript("agent", text)

        elif isinstance(event, ErrorEvent):
            body = event.error_event
            logger.error(f"❌ Conversational AI error in guild {self.session_key}: {body.error_code} {body.error_message}")

        elif isinstance(event, ConversationInitiationMetadataEvent):
            output_format = event.conversation_initiation_metadata_event.agent_output_audio_format
            if output_format and output_format != EXPECTED_AGENT_OUTPUT:
                logger.warning(
                    f"⚠️ Agent output format is {output_format}, expected {EXPECTED_AGENT_OUTPUT} "
                    f"(guild={self.session_key})"
                )

    async def _outbound_worker(self) -> None:
        while True:
            pcm = await self._outbound.get()
            interruptions = self._interruptions
            stereo = await self._convert(pcm, AGENT_OUTPUT_FORMAT, DISCORD_FORMAT)
            if interruptions != self._interruptions:
                logger.trace(f"🔇 Discarding agent audio converted across an interruption in guild {self.session_key}")
                continue
            if stereo and self.sink is not None:
                self.sink.write(stereo)

    # ------------------------------------------------------------
    # Socket
    # ------------------------------------------------------------

    async def _open_client(self) -> ConversationClient:
        try:
            client = self.client_factory(on_event=self._on_event, on_closed=self._on_socket_closed)
        except ValueError as e:
            raise SocketFailure(str(e), reason=ReasonCode.AGENT_NOT_CONFIGURED) from e
        await client.connect()
        return client

    async def _on_socket_closed(self, error: Optional[Exception]) -> None:
        if not self.active or self._stopping:
            return

        attempts = self.config.socket_reconnect_attempts
        logger.warning(f"🔌 Conversational AI socket dropped in guild {self.session_key}: {error}")

        if attempts > 0:
            try:
                self.client = await retry_async(
                    self._open_client,
                    attempts=attempts,
                    retry_on=(SocketFailure,),
                    label=f"Reconnecting conversational AI for guild {self.session_key}",
                )
                logger.info(f"✅ Conversational AI reconnected in guild {self.session_key}")
                return
            except SocketFailure as e:
                error = e

        failure = error if isinstance(error, SocketFailure) else SocketFailure(
            f"Conversational AI socket lost in guild {self.session_key}: {error}"
        )
        self.client = None
        await self.stop()
        if self.on_terminal_error is not None:
            await self.on_terminal_error(failure)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    async def _convert(self, pcm: bytes, src: PcmFormat, dst: PcmFormat) -> bytes:
        try:
            return await self.resampler.resample_async(pcm, src, dst)
        except ResampleFailure as e:
            logger.warning(f"⚠️ Dropping frame in guild {self.session_key}: {e}")
            return b""

    def _offer(self, queue: Optional[asyncio.Queue], pcm: bytes, direction: str) -> None:
        if queue is None:
            return
        try:
            queue.put_nowait(pcm)
        except asyncio.QueueFull:
            self.frames_dropped += 1
            logger.warning(f"⚠️ Speech {direction} queue full in guild {self.session_key}, dropping frame")

    @staticmethod
    def _drain(queue: Optional[asyncio.Queue]) -> int:
        drained = 0
        if queue is None:
            return drained
        while True:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                return drained
            drained += 1

    async def _transcript(self, role: str, text: str) -> None:
        if self.on_transcript is None or not text:
            return
        try:
            await self.on_transcript(role, text)
        except Exception as e:
            logger.error(f"❌ Transcript callback failed in guild {self.session_key}: {e}")
