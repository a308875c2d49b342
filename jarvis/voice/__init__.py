"""
Voice modules for Jarvis
- activity: per-session IDLE/MUSIC/SPEECH admission
- resampler: PCM conversion between agent and Discord formats
- transport: voice transport state machine and audio surface
- connection: connect/ready/disconnect/recovery lifecycle
- discord_transport, receiver, pcm_source: discord.py adapters (import directly)
"""

from .activity import ActivityState, ActivityStateMachine, Admission
from .connection import ConnectionLifecycle, VoiceTarget
from .resampler import (
    AGENT_INPUT_FORMAT,
    AGENT_OUTPUT_FORMAT,
    DISCORD_FORMAT,
    AudioResampler,
    PcmFormat,
)
from .transport import TransportState, VoiceTransport

__all__ = [
    "ActivityState",
    "ActivityStateMachine",
    "Admission",
    "ConnectionLifecycle",
    "VoiceTarget",
    "AGENT_INPUT_FORMAT",
    "AGENT_OUTPUT_FORMAT",
    "DISCORD_FORMAT",
    "AudioResampler",
    "PcmFormat",
    "TransportState",
    "VoiceTransport",
]
