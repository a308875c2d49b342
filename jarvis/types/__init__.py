"""
Jarvis Types Package

Shared type definitions:
- errors: ReasonCode and the VoiceEngineError hierarchy
"""

from jarvis.types.errors import (
    ReasonCode,
    VoiceEngineError,
    AdmissionRejected,
    ConnectionRejected,
    TransportTimeout,
    SourceUnavailable,
    ResampleFailure,
    UnsupportedConversion,
    SocketFailure,
    InternalInvariantViolation,
)

__all__ = [
    "ReasonCode",
    "VoiceEngineError",
    "AdmissionRejected",
    "ConnectionRejected",
    "TransportTimeout",
    "SourceUnavailable",
    "ResampleFailure",
    "UnsupportedConversion",
    "SocketFailure",
    "InternalInvariantViolation",
]
