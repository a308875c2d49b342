"""
Jarvis Services Package

Per-guild voice session engine:
- playback_queue: FIFO music playback with filters and idle timer
- conversation_client: ElevenLabs Conversational AI websocket client
- speech_relay: bidirectional mic/agent audio bridge
- voice_session: one guild's activity, connection, queue and relay
- session_registry: process-wide guild → session map
"""

from .playback_queue import FilterState, PlaybackQueueEngine, PlayableSource, QueueItem, UrlSource
from .conversation_client import ConversationClient, parse_event
from .speech_relay import SpeechRelay
from .voice_session import VoiceSession
from .session_registry import SessionRegistry

__all__ = [
    "FilterState",
    "PlaybackQueueEngine",
    "PlayableSource",
    "QueueItem",
    "UrlSource",
    "ConversationClient",
    "parse_event",
    "SpeechRelay",
    "VoiceSession",
    "SessionRegistry",
]
