"""
Session Registry

Process-wide map of guild id → VoiceSession. Constructed once at startup and injected into
the command layer.

- get_or_create() is atomic on the event loop (no await between lookup and insert)
- a closed session removes itself through the ``on_closed`` hook the registry installs
- remove() is identity-checked so a stale session can never evict its replacement
"""

import asyncio
from typing import Callable, Dict, Iterator, List, Optional

from jarvis.config.logging_config import get_logger
from jarvis.services.voice_session import ClosedHandler, VoiceSession

logger = get_logger(__name__)

# SessionFactory(key, on_closed) -> VoiceSession
SessionFactory = Callable[[object, ClosedHandler], VoiceSession]


class SessionRegistry:
    """Owner of every live VoiceSession."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory
        self._sessions: Dict[object, VoiceSession] = {}

    def get_or_create(self, key: object) -> VoiceSession:
        session = self._sessions.get(key)
        if session is not None and not session.closed:
            return session

        session = self.session_factory(key, self._on_session_closed)
        self._sessions[key] = session
        logger.info(f"🆕 Created voice session for guild {key} (active={len(self._sessions)})")
        return session

    def get(self, key: object) -> Optional[VoiceSession]:
        session = self._sessions.get(key)
        if session is None or session.closed:
            return None
        return session

    def remove(self, key: object, session: VoiceSession) -> bool:
        """Drop ``session`` if it is still the one registered under ``key``."""
        if self._sessions.get(key) is not session:
            logger.debug(f"🔍 Ignoring removal of stale session for guild {key}")
            return False
        del self._sessions[key]
        logger.info(f"🗑️ Removed voice session for guild {key} (active={len(self._sessions)})")
        return True

    def keys(self) -> List[object]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None

    def __iter__(self) -> Iterator[VoiceSession]:
        return iter(list(self._sessions.values()))

    async def shutdown(self) -> None:
        """Leave every session (bot shutdown)."""
        sessions = list(self._sessions.values())
        if not sessions:
            return
        logger.info(f"🛑 Closing {len(sessions)} voice session(s)")
        results = await asyncio.gather(*(s.leave() for s in sessions), return_exceptions=True)
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.error(f"❌ Failed to close session for guild {session.key}: {result}")

    def _on_session_closed(self, session: VoiceSession) -> None:
        self.remove(session.key, session)
