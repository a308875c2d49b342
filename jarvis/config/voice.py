"""
Voice Engine Configuration Module

Timeouts, queue bounds and external service settings for the voice session engine.
Loaded from environment variables with fallback defaults.

Architecture:
- Global defaults (this module) → VoiceSession / components → Runtime usage
"""

import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_ELEVENLABS_WS_URL = "wss://api.elevenlabs.io/v1/convai/conversation"


@dataclass
class VoiceEngineConfig:
    """
    Configuration for per-guild voice sessions.

    All durations are in seconds.
    """

    # Empty queue + no speech for this long tears the session down
    idle_timeout_s: float = 300.0

    # Bound on a fresh transport reaching READY
    connect_ready_timeout_s: float = 20.0

    # After DISCONNECTED, how long to wait for SIGNALLING/CONNECTING before giving up
    reconnect_window_s: float = 5.0

    # Bound on the transport being READY before a track starts
    playback_ready_timeout_s: float = 5.0

    # Bound on the sink entering the playing state after play()
    playback_start_timeout_s: float = 10.0

    # Bound on the conversational AI websocket handshake
    agent_socket_timeout_s: float = 10.0

    # Bound on a single resample call
    resample_timeout_s: float = 2.0

    # Max frames buffered per relay direction before dropping
    speech_queue_size: int = 64

    # Attempts for opening a track source (1 = no retry)
    source_open_attempts: int = 3

    # Reconnect attempts after the AI socket drops mid-conversation
    socket_reconnect_attempts: int = 1

    # Gain multiplier applied on top of volume while bassboost is on
    bassboost_gain: float = 1.5

    # ElevenLabs conversational agent
    agent_id: Optional[str] = None
    agent_ws_url: str = DEFAULT_ELEVENLABS_WS_URL

    def validate(self) -> None:
        """Validate configuration values."""
        for name in (
            "idle_timeout_s",
            "connect_ready_timeout_s",
            "reconnect_window_s",
            "playback_ready_timeout_s",
            "playback_start_timeout_s",
            "agent_socket_timeout_s",
            "resample_timeout_s",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 1 <= self.speech_queue_size <= 4096:
            raise ValueError("speech_queue_size must be between 1 and 4096")
        if not 1 <= self.source_open_attempts <= 10:
            raise ValueError("source_open_attempts must be between 1 and 10")
        if not 0 <= self.socket_reconnect_attempts <= 5:
            raise ValueError("socket_reconnect_attempts must be between 0 and 5")
        if not 1.0 <= self.bassboost_gain <= 4.0:
            raise ValueError("bassboost_gain must be between 1.0 and 4.0")

    @property
    def agent_url(self) -> str:
        """Websocket URL including the agent id query parameter."""
        if not self.agent_id:
            raise ValueError("ELEVENLABS_AGENT_ID is not set")
        return f"{self.agent_ws_url}?agent_id={self.agent_id}"


def load_voice_config() -> VoiceEngineConfig:
    """
    Load voice engine configuration from environment variables.

    Environment Variables:
        IDLE_TIMEOUT_S: Idle teardown delay (default: 300)
        CONNECT_READY_TIMEOUT_S: Transport ready bound (default: 20)
        RECONNECT_WINDOW_S: Disconnect recovery window (default: 5)
        PLAYBACK_READY_TIMEOUT_S: Ready check before a track (default: 5)
        PLAYBACK_START_TIMEOUT_S: Playing signal bound (default: 10)
        AGENT_SOCKET_TIMEOUT_S: AI socket open bound (default: 10)
        RESAMPLE_TIMEOUT_S: Resample call bound (default: 2)
        SPEECH_QUEUE_SIZE: Relay queue bound (default: 64)
        SOURCE_OPEN_ATTEMPTS: Track source attempts (default: 3)
        SOCKET_RECONNECT_ATTEMPTS: AI socket reconnects (default: 1)
        BASSBOOST_GAIN: Bassboost multiplier (default: 1.5)
        ELEVENLABS_AGENT_ID: Conversational agent id (no default)
        ELEVENLABS_WS_URL: Conversational websocket base URL

    Returns:
        VoiceEngineConfig with values loaded from environment or defaults
    """
    config = VoiceEngineConfig(
        idle_timeout_s=float(os.getenv('IDLE_TIMEOUT_S', '300')),
        connect_ready_timeout_s=float(os.getenv('CONNECT_READY_TIMEOUT_S', '20')),
        reconnect_window_s=float(os.getenv('RECONNECT_WINDOW_S', '5')),
        playback_ready_timeout_s=float(os.getenv('PLAYBACK_READY_TIMEOUT_S', '5')),
        playback_start_timeout_s=float(os.getenv('PLAYBACK_START_TIMEOUT_S', '10')),
        agent_socket_timeout_s=float(os.getenv('AGENT_SOCKET_TIMEOUT_S', '10')),
        resample_timeout_s=float(os.getenv('RESAMPLE_TIMEOUT_S', '2')),
        speech_queue_size=int(os.getenv('SPEECH_QUEUE_SIZE', '64')),
        source_open_attempts=int(os.getenv('SOURCE_OPEN_ATTEMPTS', '3')),
        socket_reconnect_attempts=int(os.getenv('SOCKET_RECONNECT_ATTEMPTS', '1')),
        bassboost_gain=float(os.getenv('BASSBOOST_GAIN', '1.5')),
        agent_id=os.getenv('ELEVENLABS_AGENT_ID') or None,
        agent_ws_url=os.getenv('ELEVENLABS_WS_URL', DEFAULT_ELEVENLABS_WS_URL),
    )

    config.validate()
    return config


# Global singleton instance
_voice_config: VoiceEngineConfig | None = None


def get_voice_config() -> VoiceEngineConfig:
    """
    Get global voice engine configuration singleton.

    Loaded from the environment on first call.
    """
    global _voice_config

    if _voice_config is None:
        _voice_config = load_voice_config()

    return _voice_config


def reset_voice_config() -> None:
    """Drop the cached configuration (next get_voice_config() reloads from env)."""
    global _voice_config
    _voice_config = None
