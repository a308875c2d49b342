"""
Playback Queue Engine

Per-session FIFO music playback over the session's voice transport.

Key Design Principles:
- FIFO queue, one current track, advance on natural end / skip / stop
- Every advance trigger is serialized by one run lock; reentering it from inside an
  advance is an invariant violation
- Per-track failures (source won't open, sink never starts) skip to the next item
- Transport not READY before a track is fatal for the session (``on_fatal``)
- The idle-teardown timer is armed only when an advance finds the queue empty
- ``after`` callbacks arrive on discord's audio thread and carry a play generation;
  callbacks from superseded plays are ignored
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, BinaryIO, Callable, Deque, List, Optional, Set, Union

import discord

from jarvis.config.logging_config import get_logger
from jarvis.config.voice import VoiceEngineConfig, get_voice_config
from jarvis.types.errors import (
    ConnectionRejected,
    InternalInvariantViolation,
    ReasonCode,
    SourceUnavailable,
    TransportTimeout,
)
from jarvis.utils.retry import retry_async
from jarvis.voice.activity import ActivityState, ActivityStateMachine
from jarvis.voice.connection import ConnectionLifecycle

logger = get_logger(__name__)

MIN_VOLUME = 0.0
MAX_VOLUME = 2.0

FFMPEG_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5 -loglevel error"
FFMPEG_OPTIONS = "-vn -ac 2 -ar 48000"


# ============================================================
# Sources
# ============================================================

StreamHandle = Union[str, BinaryIO]


class PlayableSource(ABC):
    """Something FFmpeg can read: ``open()`` returns a URL/path or a binary stream."""

    @abstractmethod
    async def open(self) -> StreamHandle:
        pass


class UrlSource(PlayableSource):
    """Direct media URL or local file path handed to FFmpeg as-is."""

    def __init__(self, url: str):
        self.url = url

    async def open(self) -> StreamHandle:
        if not self.url:
            raise SourceUnavailable("Track has no playable URL")
        return self.url

    def __repr__(self) -> str:
        return f"UrlSource({self.url!r})"


@dataclass
class QueueItem:
    """
    One queued track.

    Attributes:
        url: Playable URL (also the default source)
        title: Display title
        duration: Display duration string ("3:45")
        requested_by: Display name of the requester
        thumbnail: Optional artwork URL
        artist: Optional artist/channel name
        source: Lazily opened playable source (defaults to UrlSource(url))
    """
    url: str
    title: str
    duration: str = ""
    requested_by: str = ""
    thumbnail: Optional[str] = None
    artist: Optional[str] = None
    source: Optional[PlayableSource] = field(default=None, repr=False)

    def __post_init__(self):
        if self.source is None:
            self.source = UrlSource(self.url)


@dataclass
class FilterState:
    """Volume and bassboost applied to the live track"""
    bassboost: bool = False
    volume: float = 1.0
    bassboost_gain: float = 1.5

    @property
    def effective_volume(self) -> float:
        return self.volume * self.bassboost_gain if self.bassboost else self.volume


def build_ffmpeg_source(stream: StreamHandle) -> discord.PCMVolumeTransformer:
    """FFmpeg decode wrapped in a gain control."""
    if isinstance(stream, str):
        audio = discord.FFmpegPCMAudio(stream, before_options=FFMPEG_BEFORE_OPTIONS, options=FFMPEG_OPTIONS)
    else:
        audio = discord.FFmpegPCMAudio(stream, pipe=True, options=FFMPEG_OPTIONS)
    return discord.PCMVolumeTransformer(audio)


SourceBuilder = Callable[[StreamHandle], Any]
TrackStartHandler = Callable[[QueueItem, FilterState], Awaitable[None]]
TrackErrorHandler = Callable[[QueueItem, Exception], Awaitable[None]]
IdleHandler = Callable[[], Awaitable[None]]
FatalHandler = Callable[[Exception], Awaitable[None]]


# ============================================================
# Engine
# ============================================================

class PlaybackQueueEngine:
    """
    Music queue for one session.

    Example usage:
        queue = PlaybackQueueEngine(guild_id, activity, lifecycle, on_idle=teardown)
        position = await queue.enqueue(QueueItem(url=url, title="Song"))
        queue.set_volume(0.5)
        queue.skip()
        await queue.stop()
    """

    def __init__(
        self,
        session_key: object,
        activity: ActivityStateMachine,
        lifecycle: ConnectionLifecycle,
        *,
        config: Optional[VoiceEngineConfig] = None,
        source_builder: SourceBuilder = build_ffmpeg_source,
        on_track_start: Optional[TrackStartHandler] = None,
        on_track_error: Optional[TrackErrorHandler] = None,
        on_idle: Optional[IdleHandler] = None,
        on_fatal: Optional[FatalHandler] = None,
    ):
        self.session_key = session_key
        self.activity = activity
        self.lifecycle = lifecycle
        self.config = config or get_voice_config()
        self.source_builder = source_builder
        self.on_track_start = on_track_start
        self.on_track_error = on_track_error
        self.on_idle = on_idle
        self.on_fatal = on_fatal

        self.filters = FilterState(bassboost_gain=self.config.bassboost_gain)
        self.closed = False

        self._queue: Deque[QueueItem] = deque()
        self._current: Optional[QueueItem] = None
        self._audio: Any = None

        self._lock = asyncio.Lock()
        self._lock_owner: Optional[asyncio.Task] = None
        self._generation = 0
        self._ended_generation = -1
        self._idle_task: Optional[asyncio.Task] = None
        self._end_tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def current_track(self) -> Optional[QueueItem]:
        return self._current

    def snapshot_queue(self) -> List[QueueItem]:
        return list(self._queue)

    @property
    def idle_timer_armed(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    # ------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------

    async def enqueue(self, item: QueueItem) -> int:
        """
        Queue a track, starting playback if nothing is current.

        Returns:
            1-based queue position, or 0 when the item started (or was attempted) right away

        Raises:
            AdmissionRejected: speech is active
            ConnectionRejected: not connected, or session already closed
        """
        if self.closed:
            raise ConnectionRejected(f"Session for guild {self.session_key} is closed", reason=ReasonCode.SESSION_CLOSED)
        if self.lifecycle.transport is None:
            raise ConnectionRejected(f"Not connected in guild {self.session_key}", reason=ReasonCode.NOT_CONNECTED)

        self.activity.try_enter(ActivityState.MUSIC).raise_for_rejection()

        self._queue.append(item)
        logger.info(f"➕ Queued '{item.title}' in guild {self.session_key} (queue={len(self._queue)})")

        if self._current is None:
            await self.process_next()

        if self._current is item:
            return 0
        try:
            return self._queue.index(item) + 1
        except ValueError:
            return 0

    async def process_next(self) -> None:
        """Advance to the next playable item (or go idle on an empty queue)."""
        await self._serialized(self._advance)

    def skip(self) -> bool:
        """Stop the current track; the end-of-track path advances. False if nothing plays."""
        transport = self.lifecycle.transport
        if self._current is None or transport is None:
            return False
        logger.info(f"⏭️ Skipping '{self._current.title}' in guild {self.session_key}")
        transport.stop_playback()
        return True

    async def stop(self) -> None:
        """Clear the queue, stop playback and go idle."""
        await self._serialized(self._stop_locked)

    def set_volume(self, volume: float) -> bool:
        """Clamp to [0, 2] and apply. True when a live track picked it up."""
        self.filters.volume = min(max(float(volume), MIN_VOLUME), MAX_VOLUME)
        logger.info(f"🔊 Volume for guild {self.session_key} set to {self.filters.volume:.2f}")
        return self._apply_volume()

    def toggle_bassboost(self) -> bool:
        """Flip bassboost and return the new flag."""
        self.filters.bassboost = not self.filters.bassboost
        logger.info(f"🎛️ Bassboost for guild {self.session_key}: {'on' if self.filters.bassboost else 'off'}")
        self._apply_volume()
        return self.filters.bassboost

    def clear_filters(self) -> None:
        self.filters.bassboost = False
        self.filters.volume = 1.0
        self._apply_volume()

    def cancel_idle_timer(self) -> None:
        task = self._idle_task
        self._idle_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug(f"⏲️ Idle timer cancelled for guild {self.session_key}")

    def shutdown(self) -> None:
        """Session teardown: drop everything without advancing. Takes no lock."""
        self.closed = True
        self.cancel_idle_timer()
        self._queue.clear()
        self._generation += 1
        if self._current is not None:
            transport = self.lifecycle.transport
            if transport is not None and not transport.is_destroyed:
                transport.stop_playback()
        self._current = None
        self._audio = None

    # ------------------------------------------------------------
    # Serialized internals
    # ------------------------------------------------------------

    async def _serialized(self, fn: Callable[[], Awaitable[None]]) -> None:
        current = asyncio.current_task()
        if current is not None and self._lock_owner is current:
            raise InternalInvariantViolation(
                f"Reentrant queue advance in guild {self.session_key}"
            )
        async with self._lock:
            self._lock_owner = current
            try:
                await fn()
            finally:
                self._lock_owner = None

    async def _advance(self) -> None:
        while not self.closed:
            if self._current is not None:
                return

            if not self._queue:
                logger.info(f"📭 Queue empty in guild {self.session_key}")
                if self.activity.is_music():
                    self.activity.clear()
                if not self.activity.is_speech():
                    self._arm_idle_timer()
                return

            item = self._queue.popleft()
            self._current = item
            self.cancel_idle_timer()

            try:
                await self.lifecycle.wait_ready(self.config.playback_ready_timeout_s)
            except TransportTimeout as e:
                logger.error(f"❌ Voice transport not ready for '{item.title}' in guild {self.session_key}: {e}")
                self._current = None
                self._queue.clear()
                if self.activity.is_music():
                    self.activity.clear()
                await self._notify(self.on_fatal, e)
                return

            try:
                await self._start(item)
            except SourceUnavailable as e:
                logger.warning(f"⚠️ Skipping '{item.title}' in guild {self.session_key}: {e}")
                self._current = None
                self._audio = None
                await self._notify(self.on_track_error, item, e)
                continue

            logger.info(f"🎵 Now playing '{item.title}' in guild {self.session_key}")
            await self._notify(self.on_track_start, item, self.filters)
            return

    async def _start(self, item: QueueItem) -> None:
        """Open, play and confirm one track. Raises SourceUnavailable on any failure."""
        transport = self.lifecycle.transport
        self._loop = asyncio.get_running_loop()

        try:
            stream = await retry_async(
                item.source.open,
                attempts=self.config.source_open_attempts,
                retry_on=(SourceUnavailable, OSError),
                label=f"Opening '{item.title}'",
            )
        except SourceUnavailable:
            raise
        except Exception as e:
            raise SourceUnavailable(f"Could not open '{item.title}': {e}") from e

        try:
            audio = self.source_builder(stream)
            audio.volume = self.filters.effective_volume
        except Exception as e:
            raise SourceUnavailable(f"Could not build audio for '{item.title}': {e}") from e

        self._generation += 1
        generation = self._generation
        self._audio = audio

        try:
            transport.play(audio, after=self._make_after(generation))
        except Exception as e:
            self._generation += 1
            raise SourceUnavailable(f"Sink refused '{item.title}': {e}") from e

        if not await self._wait_started(generation):
            self._generation += 1
            transport.stop_playback()
            raise SourceUnavailable(
                f"'{item.title}' did not start within {self.config.playback_start_timeout_s}s",
                reason=ReasonCode.PLAYBACK_START_TIMEOUT,
            )

    async def _wait_started(self, generation: int, poll_interval: float = 0.05) -> bool:
        transport = self.lifecycle.transport
        deadline = self._loop.time() + self.config.playback_start_timeout_s
        while not (transport.is_playing() or self._ended_generation >= generation):
            if self._loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_interval)
        return True

    async def _stop_locked(self) -> None:
        logger.info(f"⏹️ Stopping playback in guild {self.session_key}")
        self._queue.clear()
        self._generation += 1
        transport = self.lifecycle.transport
        if self._current is not None and transport is not None and not transport.is_destroyed:
            transport.stop_playback()
        self._current = None
        self._audio = None
        if self.activity.is_music():
            self.activity.clear()
        await self._advance()

    async def _track_ended_locked(self, generation: int, error: Optional[Exception]) -> None:
        if generation != self._generation or self._current is None:
            return

        item = self._current
        self._current = None
        self._audio = None

        if error is not None:
            logger.error(f"❌ Playback error for '{item.title}' in guild {self.session_key}: {error}")
            await self._notify(self.on_track_error, item, error)
        else:
            logger.info(f"✅ Finished '{item.title}' in guild {self.session_key}")

        await self._advance()

    # ------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------

    def _make_after(self, generation: int) -> Callable[[Optional[Exception]], None]:
        loop = self._loop

        def after(error: Optional[Exception]) -> None:
            # Runs on discord's audio thread
            try:
                loop.call_soon_threadsafe(self._on_track_end, generation, error)
            except RuntimeError:
                pass

        return after

    def _on_track_end(self, generation: int, error: Optional[Exception]) -> None:
        if generation != self._generation:
            logger.trace(f"🔇 Ignoring stale end-of-track (generation {generation}) in guild {self.session_key}")
            return
        self._ended_generation = max(self._ended_generation, generation)
        task = asyncio.create_task(self._handle_track_end(generation, error))
        self._end_tasks.add(task)
        task.add_done_callback(self._end_tasks.discard)

    async def _handle_track_end(self, generation: int, error: Optional[Exception]) -> None:
        try:
            await self._serialized(lambda: self._track_ended_locked(generation, error))
        except Exception as e:
            logger.error(f"❌ Failed to advance queue in guild {self.session_key}: {e}", exc_info=True)

    def _apply_volume(self) -> bool:
        if self._current is None or self._audio is None:
            return False
        self._audio.volume = self.filters.effective_volume
        return True

    def _arm_idle_timer(self) -> None:
        if self.closed:
            return
        self.cancel_idle_timer()
        self._idle_task = asyncio.create_task(self._idle_countdown())
        logger.debug(f"⏲️ Idle timer armed for guild {self.session_key} ({self.config.idle_timeout_s}s)")

    async def _idle_countdown(self) -> None:
        await asyncio.sleep(self.config.idle_timeout_s)
        self._idle_task = None
        if self.activity.is_speech():
            logger.debug(f"⏲️ Idle timer expired during speech in guild {self.session_key}, ignoring")
            return
        logger.info(f"💤 Guild {self.session_key} idle for {self.config.idle_timeout_s}s")
        await self._notify(self.on_idle)

    async def _notify(self, callback: Optional[Callable[..., Awaitable[None]]], *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"❌ Queue callback failed in guild {self.session_key}: {e}", exc_info=True)
