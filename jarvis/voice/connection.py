"""
Connection Lifecycle

Owns the voice transport for one session and turns its state changes into exactly one of
two outcomes: nothing (benign blips, channel moves) or ``on_lost`` (the session must be torn
down).

Rules:
- connect() refuses when there is no reachable channel or a transport already exists, and
  waits a bounded time for READY (destroying the half-open transport on timeout)
- DISCONNECTED starts a recovery window: re-entering SIGNALLING/CONNECTING (or READY) in
  time is a channel move and is ignored; otherwise the transport is destroyed
- DESTROYED always fires on_lost, at most once per lifecycle
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from jarvis.config.logging_config import get_logger
from jarvis.types.errors import ConnectionRejected, ReasonCode, TransportTimeout
from jarvis.voice.transport import TransportState, VoiceTransport

logger = get_logger(__name__)


@dataclass
class VoiceTarget:
    """Where a connect request should land: the requester's current voice channel."""
    guild_id: int
    channel: Optional[Any] = None
    requested_by: Optional[str] = None
    self_deaf: bool = False


TransportFactory = Callable[[VoiceTarget], VoiceTransport]
LostCallback = Callable[[str], Awaitable[None]]
ReadyCallback = Callable[[VoiceTransport], None]


class ConnectionLifecycle:
    """Connect/ready/disconnect/recovery handling for one session's transport."""

    def __init__(
        self,
        session_key: object,
        transport_factory: TransportFactory,
        *,
        on_lost: Optional[LostCallback] = None,
        on_ready: Optional[ReadyCallback] = None,
        ready_timeout: float = 20.0,
        reconnect_window: float = 5.0,
    ):
        self.session_key = session_key
        self.transport_factory = transport_factory
        self.on_lost = on_lost
        self.on_ready = on_ready
        self.ready_timeout = ready_timeout
        self.reconnect_window = reconnect_window

        self.transport: Optional[VoiceTransport] = None
        self.lost = False
        self.lost_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self.transport is not None and self.transport.state is TransportState.READY

    async def connect(self, target: Optional[VoiceTarget]) -> VoiceTransport:
        """
        Create the transport and wait until it is READY.

        Raises:
            ConnectionRejected: no target channel, already connected, or session already lost
            TransportTimeout: READY not reached within ``ready_timeout``
        """
        if target is None or target.channel is None:
            raise ConnectionRejected(
                f"No reachable voice channel for guild {self.session_key}",
                reason=ReasonCode.NO_TARGET,
            )
        if self.lost:
            raise ConnectionRejected(
                f"Session for guild {self.session_key} is closed",
                reason=ReasonCode.SESSION_CLOSED,
            )
        if self.transport is not None and not self.transport.is_destroyed:
            raise ConnectionRejected(
                f"Already connected in guild {self.session_key}",
                reason=ReasonCode.ALREADY_CONNECTED,
            )

        transport = self.transport_factory(target)
        self.transport = transport
        transport.set_observer(self._on_state_change)

        logger.info(f"🔌 Connecting voice transport for guild {self.session_key}")
        await transport.open()

        try:
            state = await transport.wait_for_state(
                TransportState.READY, TransportState.DESTROYED, timeout=self.ready_timeout
            )
        except TransportTimeout:
            logger.error(
                f"❌ Voice transport for guild {self.session_key} not ready after "
                f"{self.ready_timeout}s, destroying"
            )
            await transport.destroy()
            raise

        if state is TransportState.DESTROYED:
            raise TransportTimeout(
                f"Voice transport for guild {self.session_key} was destroyed before becoming ready"
            )

        logger.info(f"✅ Voice transport ready for guild {self.session_key}")
        return transport

    async def disconnect(self) -> bool:
        """Destroy the transport (teardown follows via DESTROYED). False if not connected."""
        transport = self.transport
        if transport is None or transport.is_destroyed:
            return False
        logger.info(f"👋 Disconnecting voice transport for guild {self.session_key}")
        await transport.destroy()
        return True

    async def wait_ready(self, timeout: float) -> None:
        """Bounded wait for READY on the current transport (used before each track)."""
        if self.transport is None:
            raise TransportTimeout(
                f"No voice transport for guild {self.session_key}",
                reason=ReasonCode.NOT_CONNECTED,
            )
        state = await self.transport.wait_for_state(
            TransportState.READY, TransportState.DESTROYED, timeout=timeout
        )
        if state is TransportState.DESTROYED:
            raise TransportTimeout(f"Voice transport for guild {self.session_key} destroyed")

    # ------------------------------------------------------------
    # State observation
    # ------------------------------------------------------------

    def _on_state_change(self, old: TransportState, new: TransportState) -> None:
        if new is TransportState.READY:
            if self.on_ready is not None:
                self.on_ready(self.transport)
        elif new is TransportState.DISCONNECTED:
            if self._recovery_task is None or self._recovery_task.done():
                self._recovery_task = asyncio.create_task(self._watch_recovery(self.transport))
        elif new is TransportState.DESTROYED:
            self._fire_lost("transport destroyed")

    async def _watch_recovery(self, transport: VoiceTransport) -> None:
        logger.warning(
            f"⚠️ Voice transport disconnected in guild {self.session_key}, "
            f"waiting {self.reconnect_window}s for recovery"
        )
        try:
            state = await transport.wait_for_state(
                TransportState.SIGNALLING,
                TransportState.CONNECTING,
                TransportState.READY,
                TransportState.DESTROYED,
                timeout=self.reconnect_window,
            )
        except TransportTimeout:
            logger.error(f"❌ Voice transport in guild {self.session_key} did not recover, destroying")
            try:
                await transport.destroy()
            finally:
                self._fire_lost("disconnect recovery timed out")
            return

        if state is not TransportState.DESTROYED:
            logger.info(f"🔀 Voice transport in guild {self.session_key} recovering ({state.value}), ignoring disconnect")

    def _fire_lost(self, reason: str) -> None:
        if self.lost:
            return
        self.lost = True

        current = asyncio.current_task()
        if self._recovery_task is not None and self._recovery_task is not current and not self._recovery_task.done():
            self._recovery_task.cancel()

        logger.info(f"💥 Voice session lost for guild {self.session_key}: {reason}")
        if self.on_lost is not None:
            self.lost_task = asyncio.create_task(self.on_lost(reason))
