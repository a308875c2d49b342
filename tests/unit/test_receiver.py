"""
Unit tests for SpeechAudioSink

Tests routing decoded PCM from the voice-recv thread onto the event loop:
- Non-bot speakers are forwarded through call_soon_threadsafe
- Bots, unknown users and empty packets are ignored
- cleanup() stops forwarding
"""

import pytest
from unittest.mock import MagicMock, Mock

from jarvis.voice.receiver import SpeechAudioSink


def make_user(user_id=1, bot=False):
    user = MagicMock()
    user.id = user_id
    user.bot = bot
    return user


def make_data(pcm=b"\x01\x02\x03\x04"):
    data = MagicMock()
    data.pcm = pcm
    return data


@pytest.fixture
def loop():
    return MagicMock()


@pytest.fixture
def on_pcm():
    return Mock()


@pytest.fixture
def sink(loop, on_pcm):
    return SpeechAudioSink(loop, on_pcm, session_key=1234)


@pytest.mark.unit
class TestSpeechAudioSink:

    def test_wants_decoded_pcm(self, sink):
        assert sink.wants_opus() is False

    def test_forwards_user_audio(self, sink, loop, on_pcm):
        sink.write(make_user(), make_data(b"\x05\x06\x07\x08"))

        loop.call_soon_threadsafe.assert_called_once_with(on_pcm, b"\x05\x06\x07\x08")
        assert sink.speakers == {1}

    def test_tracks_each_speaker(self, sink):
        sink.write(make_user(1), make_data())
        sink.write(make_user(2), make_data())
        sink.write(make_user(1), make_data())

        assert sink.speakers == {1, 2}

    @pytest.mark.parametrize("user,data", [
        (None, make_data()),
        (make_user(bot=True), make_data()),
        (make_user(), make_data(b"")),
    ])
    def test_ignored_packets(self, sink, loop, user, data):
        sink.write(user, data)

        loop.call_soon_threadsafe.assert_not_called()

    def test_closed_loop_stops_forwarding(self, sink, loop):
        loop.call_soon_threadsafe.side_effect = RuntimeError("Event loop is closed")

        sink.write(make_user(), make_data())
        sink.write(make_user(), make_data())

        assert loop.call_soon_threadsafe.call_count == 1

    def test_cleanup_stops_forwarding(self, sink, loop):
        sink.write(make_user(), make_data())

        sink.cleanup()
        sink.write(make_user(), make_data())

        assert loop.call_soon_threadsafe.call_count == 1
        assert sink.speakers == set()
