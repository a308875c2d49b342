"""
Pytest configuration and shared fixtures for Jarvis tests
"""
import pytest
import os
import sys
from unittest.mock import AsyncMock

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from jarvis.config.voice import VoiceEngineConfig, reset_voice_config
from jarvis.voice.activity import ActivityStateMachine
from jarvis.voice.connection import ConnectionLifecycle, VoiceTarget
from tests.mocks.fake_transport import FakeTransport

GUILD_ID = 1234


# ============================================================
# Configuration
# ============================================================

@pytest.fixture(autouse=True)
def clean_voice_config():
    """Never leak the env-loaded config singleton between tests"""
    reset_voice_config()
    yield
    reset_voice_config()


@pytest.fixture
def test_config() -> VoiceEngineConfig:
    """Engine config with short timeouts so failure paths finish quickly"""
    return VoiceEngineConfig(
        idle_timeout_s=0.1,
        connect_ready_timeout_s=0.3,
        reconnect_window_s=0.1,
        playback_ready_timeout_s=0.1,
        playback_start_timeout_s=0.1,
        agent_socket_timeout_s=0.3,
        resample_timeout_s=1.0,
        speech_queue_size=8,
        source_open_attempts=1,
        socket_reconnect_attempts=1,
        agent_id="test-agent",
    )


# ============================================================
# Transport / Connection
# ============================================================

@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport(session_key=GUILD_ID)


@pytest.fixture
def voice_target() -> VoiceTarget:
    return VoiceTarget(guild_id=GUILD_ID, channel=object(), requested_by="TestUser")


@pytest.fixture
def activity() -> ActivityStateMachine:
    return ActivityStateMachine(GUILD_ID)


@pytest.fixture
def on_lost() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
async def connected_lifecycle(fake_transport, voice_target, on_lost, test_config) -> ConnectionLifecycle:
    """ConnectionLifecycle already READY on fake_transport"""
    lifecycle = ConnectionLifecycle(
        GUILD_ID,
        lambda target: fake_transport,
        on_lost=on_lost,
        ready_timeout=test_config.connect_ready_timeout_s,
        reconnect_window=test_config.reconnect_window_s,
    )
    await lifecycle.connect(voice_target)
    return lifecycle
