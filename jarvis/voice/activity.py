"""
Activity State Machine

Tracks what is currently producing audio into a guild's voice sink:
- IDLE: nothing
- MUSIC: the playback queue
- SPEECH: the conversational AI relay

Music and speech are mutually exclusive. Conflicting entries are rejected with a stable
reason code instead of overriding the current producer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from jarvis.config.logging_config import get_logger
from jarvis.types.errors import AdmissionRejected, ReasonCode

logger = get_logger(__name__)


class ActivityState(str, Enum):
    """Producer currently owning the voice sink"""
    IDLE = "idle"
    MUSIC = "music"
    SPEECH = "speech"


@dataclass(frozen=True)
class Admission:
    """Result of ActivityStateMachine.try_enter()"""
    admitted: bool
    reason: Optional[ReasonCode] = None

    def raise_for_rejection(self) -> None:
        if not self.admitted:
            raise AdmissionRejected(reason=self.reason)


ADMITTED = Admission(admitted=True)


class ActivityStateMachine:
    """Guarded IDLE/MUSIC/SPEECH enum for one session."""

    def __init__(self, session_key: object = None):
        self.session_key = session_key
        self._state = ActivityState.IDLE

    def current(self) -> ActivityState:
        return self._state

    def try_enter(self, mode: ActivityState) -> Admission:
        """
        Attempt to make ``mode`` the active producer.

        MUSIC is idempotent (queueing more tracks while playing is normal).
        SPEECH is not: a second relay must never attach to a running socket.
        """
        if mode is ActivityState.IDLE:
            raise ValueError("use clear() to return to IDLE")

        current = self._state

        if mode is ActivityState.MUSIC:
            if current is ActivityState.SPEECH:
                return self._reject(mode, ReasonCode.ALREADY_SPEAKING)
            if current is ActivityState.MUSIC:
                return ADMITTED
        else:
            if current is ActivityState.MUSIC:
                return self._reject(mode, ReasonCode.MUSIC_PLAYING)
            if current is ActivityState.SPEECH:
                return self._reject(mode, ReasonCode.ALREADY_IN_SPEECH)

        self._state = mode
        logger.info(f"🎚️ Activity state for guild {self.session_key}: {current.value} -> {mode.value}")
        return ADMITTED

    def clear(self) -> None:
        """Force IDLE (teardown, stop, leave)."""
        if self._state is not ActivityState.IDLE:
            logger.info(
                f"🎚️ Activity state for guild {self.session_key}: {self._state.value} -> idle"
            )
        self._state = ActivityState.IDLE

    def is_music(self) -> bool:
        return self._state is ActivityState.MUSIC

    def is_speech(self) -> bool:
        return self._state is ActivityState.SPEECH

    def _reject(self, mode: ActivityState, reason: ReasonCode) -> Admission:
        logger.debug(
            f"🚫 Rejected {mode.value} for guild {self.session_key} "
            f"(current={self._state.value}, reason={reason.value})"
        )
        return Admission(admitted=False, reason=reason)
