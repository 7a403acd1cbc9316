"""
Per-guild playback sessions and the process-wide session registry.

A :class:`PlaybackSession` owns one guild's voice connection, audio
player and track queue, and moves through::

    IDLE → CONNECTING → PLAYING ⇄ PAUSED → DRAINING → DESTROYED

Tracks are played strictly one after another: the player's idle/error
signal drives :meth:`PlaybackSession.advance`, which starts the next
track or tears the session down once the queue is empty.

Locking: every state/queue read-modify-write happens inside the
session lock, and the lock is never held across an ``await`` on an
external call (voice connect, stream open).  Anything that resumes
after such a call re-checks that the session is still alive and still
registered before touching state.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol

from config.constants import CONNECT_TIMEOUT
from utils.errors import (
    ChannelMismatch,
    ConnectionTimeout,
    NoActiveSession,
    StreamOpenFailure,
    UnexpectedFailure,
)
from utils.track_resolver import StreamHandle, Track

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    PLAYING = "playing"
    PAUSED = "paused"
    DRAINING = "draining"
    DESTROYED = "destroyed"


class PlayerEvent(enum.Enum):
    IDLE = "idle"
    ERROR = "error"


PlayerListener = Callable[[PlayerEvent, Optional[BaseException]], Awaitable[None]]
TrackCallback = Callable[["PlaybackSession", Track], Awaitable[None]]
TrackFailedCallback = Callable[["PlaybackSession", Track, Exception], Awaitable[None]]


# =====================================================================
#  Collaborator interfaces
# =====================================================================

class VoiceChannelRef(Protocol):
    id: int


class AudioPlayer(Protocol):
    def set_listener(self, listener: PlayerListener) -> None: ...

    def create_resource(self, stream: StreamHandle) -> Any: ...

    def play(self, resource: Any) -> None: ...

    def pause(self) -> bool: ...

    def unpause(self) -> bool: ...

    def stop(self, force: bool = False) -> None: ...


class VoiceConnection(Protocol):
    def subscribe(self, player: AudioPlayer) -> None: ...

    async def destroy(self) -> None: ...


class VoiceTransport(Protocol):
    async def connect(self, channel: VoiceChannelRef) -> VoiceConnection: ...


class StreamOpener(Protocol):
    async def open_stream(self, track: Track) -> StreamHandle: ...


# =====================================================================
#  Session
# =====================================================================

class PlaybackSession:
    """Queue and playback state machine for a single guild."""

    def __init__(
        self,
        guild_id: int,
        *,
        voice_channel: VoiceChannelRef,
        text_channel_id: Optional[int],
        transport: VoiceTransport,
        player: AudioPlayer,
        resolver: StreamOpener,
        registry: "SessionRegistry",
        connect_timeout: float = CONNECT_TIMEOUT,
        on_track_start: Optional[TrackCallback] = None,
        on_track_failed: Optional[TrackFailedCallback] = None,
    ) -> None:
        self.guild_id = guild_id
        self.voice_channel = voice_channel
        self.text_channel_id = text_channel_id
        self.queue: Deque[Track] = deque()
        self.now_playing: Optional[Track] = None
        self.state = SessionState.IDLE
        self.connect_timeout = connect_timeout

        self._transport = transport
        self._player = player
        self._resolver = resolver
        self._registry = registry
        self._connection: Optional[VoiceConnection] = None
        self._connected_channel_id: Optional[int] = None
        # A resource is loaded in the player for now_playing
        self._loaded = False
        self._skip_requested = False
        self._lock = asyncio.Lock()
        self._on_track_start = on_track_start
        self._on_track_failed = on_track_failed

        self._player.set_listener(self._on_player_event)

    def __repr__(self) -> str:
        return f"<PlaybackSession guild={self.guild_id} state={self.state.value} queued={len(self.queue)}>"

    # ── Read-only views ──────────────────────────────────────────────

    @property
    def playing(self) -> bool:
        """True while a track is loaded, including while paused."""
        return self.state in (SessionState.PLAYING, SessionState.PAUSED)

    @property
    def paused(self) -> bool:
        return self.state is SessionState.PAUSED

    @property
    def closing(self) -> bool:
        return self.state in (SessionState.DRAINING, SessionState.DESTROYED)

    @property
    def destroyed(self) -> bool:
        return self.state is SessionState.DESTROYED

    @property
    def voice_channel_id(self) -> int:
        return self.voice_channel.id

    @property
    def connected_channel_id(self) -> Optional[int]:
        """Channel the live voice connection is in, or None while not connected."""
        return self._connected_channel_id

    @property
    def is_active(self) -> bool:
        """Still alive and still the registry's session for this guild."""
        return not self.destroyed and self._registry.get(self.guild_id) is self

    def upcoming(self) -> List[Track]:
        return list(self.queue)

    def follow(self, channel: VoiceChannelRef) -> None:
        """Record that the bot was moved to *channel* by someone else."""
        self.voice_channel = channel
        if self._connection is not None:
            self._connected_channel_id = channel.id

    # ── Commands ─────────────────────────────────────────────────────

    async def enqueue(
        self,
        track: Track,
        voice_channel: Optional[VoiceChannelRef] = None,
        *,
        text_channel_id: Optional[int] = None,
    ) -> int:
        """Append *track* and start playback if the session is idle.

        Returns the track's 1-based position in the queue at the time it
        was added.  Raises ``ChannelMismatch`` if the session is bound to
        another voice channel.
        Raises ``NoActiveSession`` if the session is stopped while it is
        still connecting, since the track was discarded with the queue.
        """
        async with self._lock:
            if self.closing:
                raise NoActiveSession()
            if voice_channel is not None and voice_channel.id != self.voice_channel_id:
                bound = (
                    self.playing
                    or self.state is SessionState.CONNECTING
                    or self._connection is not None
                )
                if bound:
                    raise ChannelMismatch()
                logger.info(
                    "Retargeting idle session in guild %d to channel %d",
                    self.guild_id, voice_channel.id,
                )
                self.voice_channel = voice_channel
            if text_channel_id is not None:
                self.text_channel_id = text_channel_id

            self.queue.append(track)
            position = len(self.queue)
            start = self.state is SessionState.IDLE
            if start:
                self.state = SessionState.CONNECTING

        logger.info("Queued '%s' in guild %d (position %d)", track.title, self.guild_id, position)
        if start:
            if not await self.connect():
                raise NoActiveSession("⏹ Playback was stopped before this track could start.")
            await self.advance()
        return position

    async def connect(self) -> bool:
        """Open the voice connection and subscribe the player to it.

        Returns False when the session was stopped while connecting.
        On failure the session is destroyed and the error is raised.
        """
        channel = self.voice_channel
        try:
            connection = await asyncio.wait_for(
                self._transport.connect(channel), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Voice connection to channel %d timed out after %.0fs (guild %d)",
                channel.id, self.connect_timeout, self.guild_id,
            )
            await self.stop()
            raise ConnectionTimeout() from exc
        except Exception as exc:
            logger.error("Voice connection error in guild %d: %s", self.guild_id, exc, exc_info=True)
            await self.stop()
            raise UnexpectedFailure("❌ Could not join the voice channel.") from exc

        async with self._lock:
            stale = self.destroyed
            if not stale:
                self._connection = connection
                self._connected_channel_id = channel.id
                connection.subscribe(self._player)

        if stale:
            logger.info("Session in guild %d stopped while connecting — dropping connection", self.guild_id)
            await self._destroy_connection(connection)
            return False

        logger.info("Connected to voice channel %d in guild %d", channel.id, self.guild_id)
        return True

    async def advance(self) -> None:
        """Start the next queued track, or tear down when the queue is empty.

        Tracks whose stream cannot be opened are reported and skipped.
        """
        while True:
            async with self._lock:
                if self.closing:
                    return
                if not self.queue:
                    self.now_playing = None
                    self.state = SessionState.DRAINING
                    break
                track = self.queue.popleft()
                self.now_playing = track
                self.state = SessionState.PLAYING
                self._loaded = False
                self._skip_requested = False

            try:
                stream = await self._resolver.open_stream(track)
                async with self._lock:
                    if self.destroyed or self.now_playing is not track:
                        logger.debug("Discarding stream for '%s' — session moved on", track.title)
                        return
                    skipped = self._skip_requested
                    if not skipped:
                        self._player.play(self._player.create_resource(stream))
                        self._loaded = True
            except StreamOpenFailure as exc:
                logger.warning("Skipping '%s' in guild %d: %s", track.title, self.guild_id, exc.__cause__ or exc)
                await self._emit(self._on_track_failed, track, exc)
                continue
            except Exception as exc:
                logger.error("Could not start '%s' in guild %d: %s", track.title, self.guild_id, exc, exc_info=True)
                await self._emit(self._on_track_failed, track, StreamOpenFailure())
                continue

            if skipped:
                logger.info("Skipped '%s' in guild %d before it started", track.title, self.guild_id)
                continue

            logger.info("Now playing '%s' in guild %d", track.title, self.guild_id)
            await self._emit(self._on_track_start, track)
            return

        logger.info("Queue finished in guild %d — leaving voice", self.guild_id)
        await self._teardown()

    async def skip(self) -> bool:
        """Stop the current track; the resulting idle signal advances the queue.

        If the track's stream is still being opened there is nothing to
        stop yet, so the pending track is marked and dropped on arrival.
        """
        async with self._lock:
            if not self.playing or self._skip_requested:
                return False
            if self._loaded:
                self._player.stop(force=True)
            else:
                self._skip_requested = True
            return True

    async def pause(self) -> bool:
        async with self._lock:
            if self.state is not SessionState.PLAYING or not self._player.pause():
                return False
            self.state = SessionState.PAUSED
            return True

    async def resume(self) -> bool:
        async with self._lock:
            if self.state is not SessionState.PAUSED or not self._player.unpause():
                return False
            self.state = SessionState.PLAYING
            return True

    async def stop(self) -> None:
        """Forced teardown from any state: clear everything and leave voice."""
        await self._teardown()

    # ── Internals ────────────────────────────────────────────────────

    async def _teardown(self) -> None:
        async with self._lock:
            if self.destroyed:
                self._registry.remove(self.guild_id, self)
                return
            self.queue.clear()
            self.now_playing = None
            self.state = SessionState.DESTROYED
            self._loaded = False
            self._connected_channel_id = None
            connection, self._connection = self._connection, None

        try:
            self._player.stop(force=True)
        except Exception as exc:
            logger.warning("Player stop failed in guild %d: %s", self.guild_id, exc)
        if connection is not None:
            await self._destroy_connection(connection)
        self._registry.remove(self.guild_id, self)
        logger.info("Session destroyed for guild %d", self.guild_id)

    async def _destroy_connection(self, connection: VoiceConnection) -> None:
        try:
            await connection.destroy()
        except Exception as exc:
            logger.warning("Voice disconnect failed in guild %d: %s", self.guild_id, exc)

    async def _on_player_event(self, event: PlayerEvent, error: Optional[BaseException] = None) -> None:
        if not self.is_active:
            logger.debug("Ignoring player %s for stale session in guild %d", event.value, self.guild_id)
            return
        if event is PlayerEvent.ERROR:
            title = self.now_playing.title if self.now_playing else "unknown"
            logger.error("Player error in guild %d while playing '%s': %s", self.guild_id, title, error)
        await self.advance()

    async def _emit(self, callback: Optional[Callable[..., Awaitable[None]]], *args: Any) -> None:
        """Run a notification callback; failures never affect playback."""
        if callback is None:
            return
        try:
            await callback(self, *args)
        except Exception as exc:
            logger.warning("Notification failed in guild %d: %s", self.guild_id, exc)


# =====================================================================
#  Registry
# =====================================================================

class SessionRegistry:
    """Process-wide guild id → session mapping.

    ``get_or_create`` never awaits, so it cannot interleave with another
    command on the event loop.  Sessions that are draining or destroyed
    are treated as absent so a fresh one can take their place.
    """

    def __init__(self) -> None:
        self._sessions: Dict[int, PlaybackSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._sessions

    def get(self, guild_id: int) -> Optional[PlaybackSession]:
        session = self._sessions.get(guild_id)
        if session is None or session.closing:
            return None
        return session

    def get_or_create(self, guild_id: int, factory: Callable[[], PlaybackSession]) -> PlaybackSession:
        session = self.get(guild_id)
        if session is not None:
            return session
        session = factory()
        self._sessions[guild_id] = session
        logger.debug("Created session for guild %d", guild_id)
        return session

    def remove(self, guild_id: int, session: Optional[PlaybackSession] = None) -> None:
        """Drop the entry for *guild_id* (only if it is still *session*, when given)."""
        current = self._sessions.get(guild_id)
        if current is None:
            return
        if session is not None and current is not session:
            return
        del self._sessions[guild_id]

    def sessions(self) -> List[PlaybackSession]:
        return list(self._sessions.values())

    async def stop_all(self) -> None:
        for session in self.sessions():
            try:
                await session.stop()
            except Exception as exc:
                logger.warning("Failed to stop session for guild %d: %s", session.guild_id, exc)
