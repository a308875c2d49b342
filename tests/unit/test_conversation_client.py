"""
Unit tests for the conversational AI client

Tests event parsing and the socket lifecycle against a scripted FakeWebSocket:
- Every known event type parses to its model
- Unknown types, bad JSON and invalid payloads are ignored
- ping is answered with pong; metadata is captured
- Outbound audio payload shape
- Socket loss is reported, our own close() is not
"""

import asyncio
import base64
import json

import pytest
from unittest.mock import AsyncMock

import jarvis.services.conversation_client as conversation_client
from jarvis.services.conversation_client import (
    AgentResponseEvent,
    AudioEvent,
    ConversationClient,
    ConversationInitiationMetadataEvent,
    ErrorEvent,
    InterruptionEvent,
    PingEvent,
    UserTranscriptEvent,
    parse_event,
)
from jarvis.types.errors import ReasonCode, SocketFailure
from tests.mocks.fake_agent import FakeWebSocket, audio_event

METADATA = {
    "type": "conversation_initiation_metadata",
    "conversation_initiation_metadata_event": {
        "conversation_id": "conv-1",
        "agent_output_audio_format": "pcm_44100",
        "user_input_audio_format": "pcm_16000",
    },
}


async def settle():
    await asyncio.sleep(0.02)


@pytest.fixture
def websocket():
    return FakeWebSocket()


@pytest.fixture
def ws_connect(monkeypatch, websocket):
    connect = AsyncMock(return_value=websocket)
    monkeypatch.setattr(conversation_client.websockets, "connect", connect)
    return connect


@pytest.fixture
async def client(ws_connect):
    c = ConversationClient(
        "wss://agent.test/convai?agent_id=test-agent",
        on_event=AsyncMock(),
        on_closed=AsyncMock(),
        timeout=0.2,
        session_key=1234,
    )
    yield c
    await c.close()


@pytest.mark.unit
class TestParseEvent:

    @pytest.mark.parametrize("payload,model", [
        (audio_event(b"\x01\x02"), AudioEvent),
        ({"type": "interruption", "interruption_event": {"event_id": 3}}, InterruptionEvent),
        ({"type": "user_transcript", "user_transcription_event": {"user_transcript": "hi"}}, UserTranscriptEvent),
        ({"type": "agent_response", "agent_response_event": {"agent_response": "hello"}}, AgentResponseEvent),
        ({"type": "ping", "ping_event": {"event_id": 7, "ping_ms": 30}}, PingEvent),
        ({"type": "error", "error_event": {"error_message": "boom"}}, ErrorEvent),
        (METADATA, ConversationInitiationMetadataEvent),
    ])
    def test_known_types(self, payload, model):
        assert isinstance(parse_event(json.dumps(payload)), model)

    def test_audio_event_decodes_pcm(self):
        event = parse_event(json.dumps(audio_event(b"\x01\x02\x03\x04")))

        assert event.pcm() == b"\x01\x02\x03\x04"

    @pytest.mark.parametrize("message", [
        "not json",
        json.dumps([1, 2, 3]),
        json.dumps({"type": "vad_score", "vad_score_event": {"vad_score": 0.5}}),
        json.dumps({"type": "audio"}),
        json.dumps({"type": "conversation_initiation_metadata", "conversation_initiation_metadata_event": {}}),
    ])
    def test_ignored_messages(self, message):
        assert parse_event(message) is None


@pytest.mark.unit
class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_opens_socket(self, client, ws_connect):
        await client.connect()

        assert client.is_open
        assert ws_connect.await_args.args[0] == client.url

    @pytest.mark.asyncio
    async def test_connect_timeout(self, monkeypatch):
        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        monkeypatch.setattr(conversation_client.websockets, "connect", AsyncMock(side_effect=hang))
        c = ConversationClient("wss://agent.test", timeout=0.05)

        with pytest.raises(SocketFailure) as exc_info:
            await c.connect()

        assert exc_info.value.reason is ReasonCode.SOCKET_TIMEOUT
        assert not c.is_open

    @pytest.mark.asyncio
    async def test_connect_refused(self, monkeypatch):
        monkeypatch.setattr(
            conversation_client.websockets, "connect", AsyncMock(side_effect=OSError("connection refused"))
        )
        c = ConversationClient("wss://agent.test", timeout=0.2)

        with pytest.raises(SocketFailure) as exc_info:
            await c.connect()

        assert exc_info.value.reason is ReasonCode.SOCKET_CLOSED


@pytest.mark.unit
class TestMessages:

    @pytest.mark.asyncio
    async def test_events_are_dispatched(self, client, websocket):
        await client.connect()

        websocket.feed(audio_event(b"\x01\x02"))
        await settle()

        client.on_event.assert_awaited_once()
        assert isinstance(client.on_event.await_args.args[0], AudioEvent)

    @pytest.mark.asyncio
    async def test_ping_gets_pong(self, client, websocket):
        await client.connect()

        websocket.feed({"type": "ping", "ping_event": {"event_id": 9}})
        await settle()

        assert websocket.sent == [{"type": "pong", "event_id": 9}]
        client.on_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metadata_is_captured(self, client, websocket):
        await client.connect()

        websocket.feed(METADATA)
        await settle()

        assert client.conversation_id == "conv-1"
        assert client.agent_output_audio_format == "pcm_44100"

    @pytest.mark.asyncio
    async def test_handler_failure_keeps_loop_alive(self, client, websocket):
        client.on_event.side_effect = [RuntimeError("handler bug"), None]
        await client.connect()

        websocket.feed(audio_event(b"\x01\x02"))
        websocket.feed(audio_event(b"\x03\x04", event_id=2))
        await settle()

        assert client.on_event.await_count == 2
        client.on_closed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_audio_payload(self, client, websocket):
        await client.connect()

        assert await client.send_audio(b"\x10\x20\x30\x40")

        assert websocket.sent == [{"user_audio_chunk": base64.b64encode(b"\x10\x20\x30\x40").decode("ascii")}]

    @pytest.mark.asyncio
    async def test_send_audio_before_connect(self, client):
        assert not await client.send_audio(b"\x00\x00")

    @pytest.mark.asyncio
    async def test_send_empty_audio(self, client, websocket):
        await client.connect()

        assert not await client.send_audio(b"")
        assert websocket.sent == []


@pytest.mark.unit
class TestClose:

    @pytest.mark.asyncio
    async def test_server_end_is_reported(self, client, websocket):
        await client.connect()

        websocket.end()
        await settle()

        client.on_closed.assert_awaited_once_with(None)
        assert not client.is_open

    @pytest.mark.asyncio
    async def test_receive_error_is_reported(self, client, websocket):
        await client.connect()
        error = RuntimeError("stream broke")

        websocket.fail(error)
        await settle()

        client.on_closed.assert_awaited_once_with(error)

    @pytest.mark.asyncio
    async def test_close_is_silent_and_idempotent(self, client, websocket):
        await client.connect()

        await client.close()
        await client.close()
        await settle()

        assert websocket.closed
        assert not client.is_open
        client.on_closed.assert_not_awaited()
        assert not await client.send_audio(b"\x00\x00")
