"""
Jarvis Voice Engine Error Taxonomy

Every failure the engine surfaces to the command layer is a VoiceEngineError carrying a
stable ReasonCode. The command layer renders user messages from the code and never
inspects exception text.

Categories:
- Admission: activity-state conflicts (recoverable, user-facing)
- Transport: connect/ready/disconnect bounds exceeded (session teardown)
- Source: a queued track cannot be opened or streamed (skip to next)
- Resample: one frame could not be converted (drop the frame)
- Socket: conversational AI websocket failures (relay only)
- Internal: invariant violations (abort the operation, log loudly)
"""

from enum import Enum
from typing import Optional


class ReasonCode(str, Enum):
    """Stable reason codes for rejected or failed operations."""

    # Activity admission
    ALREADY_SPEAKING = "already_speaking"
    MUSIC_PLAYING = "music_playing"
    ALREADY_IN_SPEECH = "already_in_speech"
    NOT_ADMITTED = "not_admitted"

    # Connection
    NO_TARGET = "no_target"
    ALREADY_CONNECTED = "already_connected"
    NOT_CONNECTED = "not_connected"
    TRANSPORT_TIMEOUT = "transport_timeout"
    SESSION_CLOSED = "session_closed"

    # Playback
    SOURCE_UNAVAILABLE = "source_unavailable"
    PLAYBACK_START_TIMEOUT = "playback_start_timeout"

    # Audio
    RESAMPLE_FAILED = "resample_failed"
    UNSUPPORTED_CONVERSION = "unsupported_conversion"

    # Speech relay
    SOCKET_TIMEOUT = "socket_timeout"
    SOCKET_CLOSED = "socket_closed"
    AGENT_NOT_CONFIGURED = "agent_not_configured"

    # Internal
    INVARIANT_VIOLATION = "invariant_violation"


class VoiceEngineError(Exception):
    """Base exception for voice engine errors."""

    default_reason = ReasonCode.INVARIANT_VIOLATION

    def __init__(self, message: str = "", reason: Optional[ReasonCode] = None):
        self.reason = reason or self.default_reason
        super().__init__(message or self.reason.value)


class AdmissionRejected(VoiceEngineError):
    """Activity-state conflict (music vs speech)."""
    default_reason = ReasonCode.NOT_ADMITTED


class ConnectionRejected(VoiceEngineError):
    """Connect refused before any transport was created (no target, double join)."""
    default_reason = ReasonCode.NO_TARGET


class TransportTimeout(VoiceEngineError):
    """Transport did not reach the expected state within its bound."""
    default_reason = ReasonCode.TRANSPORT_TIMEOUT


class SourceUnavailable(VoiceEngineError):
    """Track source could not be opened or failed to start playing."""
    default_reason = ReasonCode.SOURCE_UNAVAILABLE


class ResampleFailure(VoiceEngineError):
    """Resampling backend failed for one buffer."""
    default_reason = ReasonCode.RESAMPLE_FAILED


class UnsupportedConversion(VoiceEngineError, ValueError):
    """Requested PCM conversion is not one of the supported directions."""
    default_reason = ReasonCode.UNSUPPORTED_CONVERSION


class SocketFailure(VoiceEngineError):
    """Conversational AI websocket failed to open or dropped for good."""
    default_reason = ReasonCode.SOCKET_CLOSED


class InternalInvariantViolation(VoiceEngineError):
    """Engine invariant broken (e.g. reentrant queue advance)."""
    default_reason = ReasonCode.INVARIANT_VIOLATION
