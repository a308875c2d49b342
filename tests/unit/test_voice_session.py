"""
Unit tests for VoiceSession

Tests how one guild's components are wired together:
- connect() arms the idle countdown; the idle timeout tears everything down
- begin_speech() admission, failure path and idle-timer handling
- transport loss, leave() and clear()
- a closed session rejects further commands
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, Mock

from jarvis.services.playback_queue import QueueItem
from jarvis.services.voice_session import VoiceSession
from jarvis.types.errors import AdmissionRejected, ConnectionRejected, ReasonCode, SocketFailure
from jarvis.voice.activity import ActivityState
from tests.mocks.fake_agent import FakeClientFactory
from tests.mocks.fake_transport import FakeAudio, FakeTransport

GUILD_ID = 1234


def track(name: str) -> QueueItem:
    return QueueItem(url=f"https://media.test/{name}.mp3", title=name, requested_by="tester")


def make_session(config, transport=None, client_factory=None, **callbacks) -> VoiceSession:
    transport = transport or FakeTransport(session_key=GUILD_ID)
    resampler = MagicMock()
    resampler.resample_async = AsyncMock(side_effect=lambda data, src, dst: data)
    return VoiceSession(
        GUILD_ID,
        transport_factory=lambda target: transport,
        client_factory=client_factory or FakeClientFactory(),
        config=config,
        source_builder=FakeAudio,
        resampler=resampler,
        **callbacks,
    )


@pytest.fixture
def on_closed():
    return Mock()


@pytest.fixture
async def session(test_config, fake_transport, on_closed):
    s = make_session(test_config, fake_transport, on_closed=on_closed)
    yield s
    await s.leave()


@pytest.fixture
async def connected(session, voice_target):
    await session.connect(voice_target)
    return session


@pytest.mark.unit
class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_arms_idle_timer(self, connected):
        assert connected.lifecycle.is_ready
        assert connected.queue.idle_timer_armed

    @pytest.mark.asyncio
    async def test_idle_timeout_tears_down(self, connected, fake_transport, on_closed, test_config):
        await connected.wait_closed(timeout=test_config.idle_timeout_s + 1.0)

        assert connected.closed
        assert fake_transport.destroy_calls == 1
        on_closed.assert_called_once_with(connected)

    @pytest.mark.asyncio
    async def test_music_keeps_session_alive(self, connected, test_config):
        await connected.queue.enqueue(track("a"))

        await asyncio.sleep(test_config.idle_timeout_s + 0.1)

        assert not connected.closed
        assert connected.activity.current() is ActivityState.MUSIC


@pytest.mark.unit
class TestBeginSpeech:

    @pytest.mark.asyncio
    async def test_requires_connection(self, session):
        with pytest.raises(ConnectionRejected) as exc_info:
            await session.begin_speech()

        assert exc_info.value.reason is ReasonCode.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_starts_relay_and_cancels_idle_timer(self, connected):
        await connected.begin_speech()

        assert connected.speech.active
        assert connected.activity.current() is ActivityState.SPEECH
        assert not connected.queue.idle_timer_armed

    @pytest.mark.asyncio
    async def test_rejected_while_music(self, connected):
        await connected.queue.enqueue(track("a"))

        with pytest.raises(AdmissionRejected) as exc_info:
            await connected.begin_speech()

        assert exc_info.value.reason is ReasonCode.MUSIC_PLAYING
        assert not connected.speech.active

    @pytest.mark.asyncio
    async def test_socket_failure_returns_to_idle(self, test_config, fake_transport, voice_target):
        factory = FakeClientFactory(SocketFailure("agent down", reason=ReasonCode.SOCKET_TIMEOUT))
        s = make_session(test_config, fake_transport, client_factory=factory)
        await s.connect(voice_target)

        with pytest.raises(SocketFailure):
            await s.begin_speech()

        assert s.activity.current() is ActivityState.IDLE
        assert s.queue.idle_timer_armed
        await s.leave()

    @pytest.mark.asyncio
    async def test_stopping_speech_rearms_idle_timer(self, connected):
        await connected.begin_speech()

        await connected.speech.stop()

        assert connected.activity.current() is ActivityState.IDLE
        assert connected.queue.idle_timer_armed

    @pytest.mark.asyncio
    async def test_terminal_speech_error_is_reported(self, test_config, fake_transport, voice_target):
        on_speech_error = AsyncMock()
        factory = FakeClientFactory()
        s = make_session(test_config, fake_transport, client_factory=factory, on_speech_error=on_speech_error)
        await s.connect(voice_target)
        await s.begin_speech()
        factory.failures.append(SocketFailure("still down"))

        await factory.last.on_closed(None)

        on_speech_error.assert_awaited_once()
        assert not s.speech.active
        assert not s.closed
        await s.leave()


@pytest.mark.unit
class TestTeardown:

    @pytest.mark.asyncio
    async def test_transport_destroyed_tears_down(self, connected, fake_transport, on_closed):
        await connected.begin_speech()
        client = connected.speech.client

        await fake_transport.destroy()
        await connected.wait_closed(timeout=1.0)

        assert connected.close_reason == "transport destroyed"
        assert client.closed
        assert connected.queue.closed
        assert connected.activity.current() is ActivityState.IDLE
        on_closed.assert_called_once_with(connected)

    @pytest.mark.asyncio
    async def test_leave_is_idempotent(self, connected, fake_transport, on_closed):
        await connected.leave()
        await connected.leave()

        assert connected.closed
        assert fake_transport.destroy_calls == 1
        on_closed.assert_called_once_with(connected)

    @pytest.mark.asyncio
    async def test_leave_without_connecting(self, session, on_closed):
        await session.leave()

        assert session.closed
        assert session.close_reason == "left"
        on_closed.assert_called_once_with(session)

    @pytest.mark.asyncio
    async def test_closed_session_rejects_commands(self, connected, voice_target):
        await connected.leave()

        for command in (lambda: connected.connect(voice_target), connected.begin_speech, connected.clear):
            with pytest.raises(ConnectionRejected) as exc_info:
                await command()
            assert exc_info.value.reason is ReasonCode.SESSION_CLOSED

    @pytest.mark.asyncio
    async def test_clear_stops_music_but_stays_connected(self, connected, fake_transport):
        await connected.queue.enqueue(track("a"))
        await connected.queue.enqueue(track("b"))

        await connected.clear()

        assert connected.activity.current() is ActivityState.IDLE
        assert connected.queue.current_track() is None
        assert connected.queue.snapshot_queue() == []
        assert not connected.closed
        assert connected.lifecycle.is_ready


@pytest.mark.unit
class TestIdleDuringSpeech:

    @pytest.mark.asyncio
    async def test_queue_stop_during_speech_keeps_session(self, connected, test_config):
        await connected.begin_speech()

        await connected.queue.stop()
        await asyncio.sleep(test_config.idle_timeout_s + 0.2)

        assert not connected.queue.idle_timer_armed
        assert not connected.closed
        assert connected.activity.current() is ActivityState.SPEECH
        assert connected.speech.active
