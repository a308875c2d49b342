"""
Voice Transport Abstraction

A transport is one real-time voice connection for one guild. It owns a small closed state
machine that the engine observes but never drives directly:

    SIGNALLING → CONNECTING → READY → DISCONNECTED → DESTROYED

Concrete adapters (see discord_transport.py) call ``_transition()`` as the underlying
connection changes. The owning session registers exactly one observer; components that
need to block on a state use ``wait_for_state()`` with an explicit timeout.

Besides state, a transport exposes the audio surface the engine needs: an outbound sink
(``play``/``stop_playback``/``is_playing``) and inbound per-speaker capture
(``listen``/``stop_listening``).
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple, FrozenSet

from jarvis.config.logging_config import get_logger
from jarvis.types.errors import TransportTimeout

logger = get_logger(__name__)


class TransportState(str, Enum):
    """Mirror of the underlying voice connection state"""
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


# observer(old_state, new_state)
StateObserver = Callable[[TransportState, TransportState], None]

# after(error) - invoked by the sink when a source finishes or fails (may be off-loop)
AfterCallback = Callable[[Optional[Exception]], Any]


class VoiceTransport(ABC):
    """
    Base class for voice transports.

    Subclasses implement ``open``, ``destroy`` and the audio surface, and report state
    changes through ``_transition``.
    """

    def __init__(self, session_key: object = None):
        self.session_key = session_key
        self._state = TransportState.SIGNALLING
        self._observer: Optional[StateObserver] = None
        self._waiters: List[Tuple[FrozenSet[TransportState], asyncio.Future]] = []

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_destroyed(self) -> bool:
        return self._state is TransportState.DESTROYED

    def set_observer(self, observer: Optional[StateObserver]) -> None:
        """Register the single state observer (None clears it)."""
        if observer is not None and self._observer is not None:
            raise RuntimeError("Transport already has a state observer")
        self._observer = observer

    def _transition(self, new_state: TransportState) -> None:
        """Record a state change reported by the underlying connection."""
        old_state = self._state
        if old_state is new_state or old_state is TransportState.DESTROYED:
            return

        self._state = new_state
        logger.debug(f"🔌 Transport state for guild {self.session_key}: {old_state.value} -> {new_state.value}")

        for states, future in list(self._waiters):
            if new_state in states and not future.done():
                future.set_result(new_state)

        if self._observer is not None:
            try:
                self._observer(old_state, new_state)
            except Exception as e:
                logger.error(f"❌ Transport observer failed for guild {self.session_key}: {e}", exc_info=True)

    async def wait_for_state(self, *states: TransportState, timeout: float) -> TransportState:
        """
        Wait until the transport enters one of ``states``.

        Returns immediately if already there.

        Raises:
            TransportTimeout: none of the states was entered within ``timeout`` seconds
        """
        if self._state in states:
            return self._state

        future = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), future)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as e:
            wanted = "/".join(s.value for s in states)
            raise TransportTimeout(
                f"Transport for guild {self.session_key} did not reach {wanted} within {timeout}s "
                f"(state={self._state.value})"
            ) from e
        finally:
            self._waiters.remove(entry)

    # ------------------------------------------------------------
    # Lifecycle (adapter specific)
    # ------------------------------------------------------------

    @abstractmethod
    async def open(self) -> None:
        """Begin connecting. Must return promptly; readiness is reported via state."""
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the connection down for good and enter DESTROYED."""
        pass

    # ------------------------------------------------------------
    # Audio surface (adapter specific)
    # ------------------------------------------------------------

    @abstractmethod
    def play(self, source: Any, after: Optional[AfterCallback] = None) -> None:
        pass

    @abstractmethod
    def stop_playback(self) -> None:
        pass

    @abstractmethod
    def is_playing(self) -> bool:
        pass

    @abstractmethod
    def listen(self, sink: Any) -> None:
        pass

    @abstractmethod
    def stop_listening(self) -> None:
        pass
