"""
ElevenLabs Conversational AI WebSocket Client

Thin async client for the convai conversation socket:
- Opens the socket within a bounded time (SocketFailure otherwise)
- Parses inbound JSON into typed pydantic events and hands them to one callback
- Answers ``ping`` with ``pong`` and records the conversation metadata itself
- Sends microphone audio as ``{"user_audio_chunk": <base64 16kHz mono PCM>}``
- Reports the socket going away (unless we closed it) through ``on_closed``
"""

import asyncio
import base64
import json
from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, Union

import websockets
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from jarvis.config.logging_config import get_logger
from jarvis.types.errors import ReasonCode, SocketFailure

logger = get_logger(__name__)


# ============================================================
# Inbound events
# ============================================================

class AudioEventBody(BaseModel):
    audio_base_64: str = Field(..., description="Base64 s16le agent speech")
    event_id: Optional[int] = None


class AudioEvent(BaseModel):
    type: Literal["audio"] = "audio"
    audio_event: AudioEventBody

    def pcm(self) -> bytes:
        return base64.b64decode(self.audio_event.audio_base_64)


class InterruptionEventBody(BaseModel):
    event_id: Optional[int] = None


class InterruptionEvent(BaseModel):
    type: Literal["interruption"] = "interruption"
    interruption_event: InterruptionEventBody = Field(default_factory=InterruptionEventBody)


class UserTranscriptBody(BaseModel):
    user_transcript: str = ""
    confidence_score: Optional[float] = None
    is_final: Optional[bool] = None


class UserTranscriptEvent(BaseModel):
    type: Literal["user_transcript"] = "user_transcript"
    user_transcription_event: UserTranscriptBody = Field(default_factory=UserTranscriptBody)


class AgentResponseBody(BaseModel):
    agent_response: str = ""
    response_id: Optional[str] = None


class AgentResponseEvent(BaseModel):
    type: Literal["agent_response"] = "agent_response"
    agent_response_event: AgentResponseBody = Field(default_factory=AgentResponseBody)


class PingEventBody(BaseModel):
    event_id: Optional[int] = None
    ping_ms: Optional[int] = None


class PingEvent(BaseModel):
    type: Literal["ping"] = "ping"
    ping_event: PingEventBody = Field(default_factory=PingEventBody)


class ErrorEventBody(BaseModel):
    error_code: Optional[str] = None
    error_message: str = ""


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error_event: ErrorEventBody = Field(default_factory=ErrorEventBody)


class InitiationMetadataBody(BaseModel):
    conversation_id: str
    agent_output_audio_format: Optional[str] = None
    user_input_audio_format: Optional[str] = None


class ConversationInitiationMetadataEvent(BaseModel):
    type: Literal["conversation_initiation_metadata"] = "conversation_initiation_metadata"
    conversation_initiation_metadata_event: InitiationMetadataBody


AgentEvent = Annotated[
    Union[
        AudioEvent,
        InterruptionEvent,
        UserTranscriptEvent,
        AgentResponseEvent,
        PingEvent,
        ErrorEvent,
        ConversationInitiationMetadataEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(AgentEvent)

KNOWN_EVENT_TYPES = frozenset({
    "audio",
    "interruption",
    "user_transcript",
    "agent_response",
    "ping",
    "error",
    "conversation_initiation_metadata",
})


def parse_event(message: Union[str, bytes]) -> Optional[AgentEvent]:
    """
    Parse one socket message.

    Returns None (after logging) for invalid JSON, unknown event types and payloads that
    fail validation.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError:
        logger.error(f"❌ Invalid JSON from conversational AI: {message[:200]!r}")
        return None

    event_type = data.get("type") if isinstance(data, dict) else None
    if event_type not in KNOWN_EVENT_TYPES:
        logger.debug(f"🔍 Ignoring conversational AI event type: {event_type}")
        return None

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        logger.warning(f"⚠️ Malformed '{event_type}' event from conversational AI: {e}")
        return None


# ============================================================
# Client
# ============================================================

EventHandler = Callable[[Any], Awaitable[None]]
ClosedHandler = Callable[[Optional[Exception]], Awaitable[None]]


class ConversationClient:
    """
    One conversational AI socket.

    Example usage:
        client = ConversationClient(url, on_event=handle_event, on_closed=handle_closed)
        await client.connect()
        await client.send_audio(pcm_16k_mono)
        await client.close()
    """

    def __init__(
        self,
        url: str,
        *,
        on_event: Optional[EventHandler] = None,
        on_closed: Optional[ClosedHandler] = None,
        timeout: float = 10.0,
        session_key: object = None,
    ):
        self.url = url
        self.on_event = on_event
        self.on_closed = on_closed
        self.timeout = timeout
        self.session_key = session_key

        self.websocket = None
        self.conversation_id: Optional[str] = None
        self.agent_output_audio_format: Optional[str] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self.websocket is not None and not self._closing

    async def connect(self) -> None:
        """
        Open the socket and start the receive loop.

        Raises:
            SocketFailure: handshake failed or did not finish within ``timeout``
        """
        logger.info(f"🔌 Connecting to conversational AI (guild={self.session_key})")
        try:
            self.websocket = await asyncio.wait_for(
                websockets.connect(self.url, ping_interval=20, ping_timeout=10),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"⏱️ Conversational AI connection timeout after {self.timeout}s (guild={self.session_key})")
            raise SocketFailure(
                f"Conversational AI socket did not open within {self.timeout}s",
                reason=ReasonCode.SOCKET_TIMEOUT,
            ) from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.error(f"❌ Failed to connect to conversational AI (guild={self.session_key}): {e}")
            raise SocketFailure(f"Conversational AI socket failed to open: {e}") from e

        logger.info(f"✅ Conversational AI connected (guild={self.session_key})")
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def send_audio(self, pcm: bytes) -> bool:
        """Send one 16kHz mono PCM chunk. False when the socket is not open."""
        if not pcm or not self.is_open:
            return False
        message = {"user_audio_chunk": base64.b64encode(pcm).decode("ascii")}
        return await self._send(message)

    async def close(self) -> None:
        """Close the socket without reporting it through ``on_closed``. Idempotent."""
        if self._closing:
            return
        self._closing = True

        task = self._receive_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        websocket = self.websocket
        self.websocket = None
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"🔌 Error closing conversational AI socket: {e}")

        logger.info(f"🔌 Conversational AI socket closed (guild={self.session_key})")

    async def _send(self, message: dict) -> bool:
        try:
            await self.websocket.send(json.dumps(message))
            return True
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"🔌 Send on closed conversational AI socket (guild={self.session_key})")
            return False

    async def _receive_loop(self) -> None:
        error: Optional[Exception] = None
        try:
            async for message in self.websocket:
                await self._handle_message(message)
        except websockets.exceptions.ConnectionClosed as e:
            error = e
            logger.warning(f"🔌 Conversational AI connection closed (guild={self.session_key}): {e}")
        except asyncio.CancelledError:
            logger.debug(f"🛑 Conversational AI receive loop cancelled (guild={self.session_key})")
            raise
        except Exception as e:
            error = e
            logger.error(f"❌ Error in conversational AI receive loop (guild={self.session_key}): {e}", exc_info=True)

        if self._closing:
            return
        self.websocket = None
        if self.on_closed is not None:
            await self.on_closed(error)

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        event = parse_event(message)
        if event is None:
            return

        if isinstance(event, PingEvent):
            await self._send({"type": "pong", "event_id": event.ping_event.event_id})
            return

        if isinstance(event, ConversationInitiationMetadataEvent):
            metadata = event.conversation_initiation_metadata_event
            self.conversation_id = metadata.conversation_id
            self.agent_output_audio_format = metadata.agent_output_audio_format
            logger.info(
                f"🆔 Conversation started (guild={self.session_key}, id={metadata.conversation_id}, "
                f"output={metadata.agent_output_audio_format})"
            )

        if self.on_event is not None:
            try:
                await self.on_event(event)
            except Exception as e:
                logger.error(f"❌ Conversational AI event handler failed ({event.type}): {e}", exc_info=True)
