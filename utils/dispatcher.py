"""
Command dispatcher for the music commands.

Framework-agnostic: it talks to a :class:`CommandContext` (the music cog
adapts ``discord.Interaction`` to it) and guarantees that every command
gets exactly one reply, whatever goes wrong.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional, Protocol

import discord
from discord.utils import escape_markdown

from config.constants import QUEUE_PAGE_SIZE
from utils.embedder import Embedder
from utils.errors import (
    ChannelMismatch,
    MusicError,
    NoActiveSession,
    NoVoiceChannel,
    PlayerRejected,
    TrackNotFound,
    UnexpectedFailure,
)
from utils.playback import PlaybackSession, SessionRegistry, VoiceChannelRef
from utils.track_resolver import TrackResolver

logger = logging.getLogger(__name__)


class CommandContext(Protocol):
    """What the dispatcher needs from an inbound slash command."""

    command_name: str
    guild_id: Optional[int]
    text_channel_id: Optional[int]
    caller_tag: str

    def get_string_option(self, name: str) -> Optional[str]: ...

    def get_caller_voice_channel(self) -> Optional[VoiceChannelRef]: ...

    async def defer(self) -> None: ...

    async def reply(self, embed: discord.Embed, *, ephemeral: bool = False) -> None: ...


SessionFactory = Callable[[CommandContext, VoiceChannelRef], PlaybackSession]


# =====================================================================
#  Dispatcher
# =====================================================================

class CommandDispatcher:
    """Validates a music command, runs it against the session layer, and replies."""

    COMMANDS = ("play", "skip", "stop", "queue", "now", "pause", "resume")

    def __init__(
        self,
        registry: SessionRegistry,
        resolver: TrackResolver,
        session_factory: SessionFactory,
        *,
        queue_page_size: int = QUEUE_PAGE_SIZE,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.session_factory = session_factory
        self.queue_page_size = queue_page_size
        self._handlers: Dict[str, Callable[[CommandContext], Awaitable[None]]] = {
            "play": self.play,
            "skip": self.skip,
            "stop": self.stop,
            "queue": self.queue,
            "now": self.now,
            "pause": self.pause,
            "resume": self.resume,
        }

    async def dispatch(self, ctx: CommandContext) -> None:
        """Run *ctx*'s command; errors become a single user-facing reply."""
        name = ctx.command_name
        try:
            handler = self._handlers.get(name)
            if handler is None:
                raise UnexpectedFailure(f"Unknown command `/{name}`.")
            if ctx.guild_id is None:
                await self._reply(
                    ctx,
                    Embedder.error("Server Only", "This command can only be used in a server."),
                    ephemeral=True,
                )
                return
            await handler(ctx)
        except MusicError as exc:
            logger.info("/%s in guild %s failed: %s", name, ctx.guild_id, type(exc).__name__)
            await self._reply(ctx, Embedder.from_error(exc), ephemeral=exc.is_validation)
        except Exception as exc:
            logger.error("Unhandled error in /%s (guild %s): %s", name, ctx.guild_id, exc, exc_info=True)
            await self._reply(ctx, Embedder.from_error(UnexpectedFailure()), ephemeral=True)

    async def _reply(self, ctx: CommandContext, embed: discord.Embed, *, ephemeral: bool = False) -> None:
        try:
            await ctx.reply(embed, ephemeral=ephemeral)
        except Exception as exc:
            logger.warning("Could not reply to /%s: %s", ctx.command_name, exc)

    def _require_session(self, ctx: CommandContext) -> PlaybackSession:
        session = self.registry.get(ctx.guild_id)
        if session is None:
            raise NoActiveSession()
        return session

    # ── Commands ─────────────────────────────────────────────────────

    async def play(self, ctx: CommandContext) -> None:
        voice_channel = ctx.get_caller_voice_channel()
        if voice_channel is None:
            raise NoVoiceChannel()
        query = (ctx.get_string_option("query") or "").strip()
        if not query:
            raise TrackNotFound("❌ Give me a song name or a link.")

        # Cheap rejection before spending time on the lookup
        existing = self.registry.get(ctx.guild_id)
        if existing is not None and existing.playing and existing.voice_channel_id != voice_channel.id:
            raise ChannelMismatch()

        await ctx.defer()
        track = await self.resolver.resolve(query, ctx.caller_tag)

        session = self.registry.get_or_create(
            ctx.guild_id, lambda: self.session_factory(ctx, voice_channel)
        )
        position = await session.enqueue(track, voice_channel, text_channel_id=ctx.text_channel_id)
        await self._reply(ctx, Embedder.queued(track, position, started=session.now_playing is track))

    async def skip(self, ctx: CommandContext) -> None:
        session = self._require_session(ctx)
        current = session.now_playing
        if not await session.skip():
            raise PlayerRejected("There’s nothing to skip.")
        title = escape_markdown(current.title) if current else "current track"
        await self._reply(ctx, Embedder.success("Skipped", f"⏭ Skipped **{title}**"))

    async def stop(self, ctx: CommandContext) -> None:
        session = self._require_session(ctx)
        await session.stop()
        await self._reply(ctx, Embedder.info("Stopped", "⏹ Music stopped and left the voice channel."))

    async def queue(self, ctx: CommandContext) -> None:
        session = self.registry.get(ctx.guild_id)
        if session is None:
            await self._reply(ctx, Embedder.warning("Queue Empty", "Nothing is playing."), ephemeral=True)
            return
        await self._reply(
            ctx,
            Embedder.queue_listing(
                session.now_playing, session.upcoming(),
                paused=session.paused, page_size=self.queue_page_size,
            ),
        )

    async def now(self, ctx: CommandContext) -> None:
        session = self.registry.get(ctx.guild_id)
        if session is None or session.now_playing is None:
            await self._reply(
                ctx, Embedder.warning("Nothing Playing", "Nothing is playing right now."), ephemeral=True
            )
            return
        await self._reply(ctx, Embedder.now_playing(session.now_playing))

    async def pause(self, ctx: CommandContext) -> None:
        session = self._require_session(ctx)
        if not await session.pause():
            raise PlayerRejected("Couldn’t pause — nothing is playing.")
        await self._reply(ctx, Embedder.info("Paused", "⏸ Playback paused."))

    async def resume(self, ctx: CommandContext) -> None:
        session = self._require_session(ctx)
        if not await session.resume():
            raise PlayerRejected("Couldn’t resume — playback isn’t paused.")
        await self._reply(ctx, Embedder.success("Resumed", "▶ Playback resumed."))
