"""
Music Cog — voice channel playback with a per-server queue.

Commands:
    /play    — Search or paste a link and play it in your voice channel
    /skip    — Skip the current track
    /stop    — Stop, clear the queue and leave the voice channel
    /queue   — Show the queue
    /now     — Show the current track
    /pause   — Pause playback
    /resume  — Resume playback

System requirement:
    FFmpeg must be installed on the host system (e.g. ``apt install ffmpeg``)
    for voice channel playback to work.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from utils.dispatcher import CommandContext, CommandDispatcher
from utils.embedder import Embedder
from utils.playback import PlaybackSession
from utils.track_resolver import Track
from utils.voice import DiscordAudioPlayer, DiscordVoiceTransport

if TYPE_CHECKING:
    from bot import NaghamBot

logger = logging.getLogger(__name__)


# =====================================================================
#  Interaction adapter
# =====================================================================

class InteractionContext:
    """Presents a ``discord.Interaction`` as a dispatcher ``CommandContext``."""

    def __init__(self, interaction: discord.Interaction, command_name: str, **options: str) -> None:
        self.interaction = interaction
        self.command_name = command_name
        self.guild_id = interaction.guild_id
        self.text_channel_id = interaction.channel_id
        self.caller_tag = str(interaction.user)
        self._options: Dict[str, str] = options

    def get_string_option(self, name: str) -> Optional[str]:
        return self._options.get(name)

    def get_caller_voice_channel(self) -> Optional[discord.abc.Connectable]:
        member = self.interaction.user
        if not isinstance(member, discord.Member) and self.interaction.guild:
            member = self.interaction.guild.get_member(member.id)
        voice = getattr(member, "voice", None)
        if voice is None or voice.channel is None:
            return None
        return voice.channel

    async def defer(self) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer()

    async def reply(self, embed: discord.Embed, *, ephemeral: bool = False) -> None:
        if self.interaction.response.is_done():
            await self.interaction.followup.send(embed=embed, ephemeral=ephemeral)
        else:
            await self.interaction.response.send_message(embed=embed, ephemeral=ephemeral)


# =====================================================================
#  The Cog
# =====================================================================

class MusicCog(commands.Cog, name="Music"):
    """Slash-command surface over the session layer.

    Requires FFmpeg to be installed on the host system for voice
    channel playback (``apt install ffmpeg``).
    """

    def __init__(self, bot: "NaghamBot") -> None:
        self.bot = bot
        self.settings = bot.settings
        self.registry = bot.sessions
        self.resolver = bot.resolver
        self.transport = DiscordVoiceTransport(timeout=self.settings.connect_timeout)
        self.dispatcher = CommandDispatcher(
            self.registry,
            self.resolver,
            self._new_session,
            queue_page_size=self.settings.queue_page_size,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def cog_load(self) -> None:
        logger.info("Music cog loaded")

    async def cog_unload(self) -> None:
        """Leave every voice channel."""
        await self.registry.stop_all()
        logger.info("Music cog unloaded — all sessions stopped")

    # ── Session wiring ────────────────────────────────────────────────

    def _new_session(self, ctx: CommandContext, voice_channel: discord.abc.Connectable) -> PlaybackSession:
        announce = self.settings.announce_tracks
        return PlaybackSession(
            ctx.guild_id,
            voice_channel=voice_channel,
            text_channel_id=ctx.text_channel_id,
            transport=self.transport,
            player=DiscordAudioPlayer(),
            resolver=self.resolver,
            registry=self.registry,
            connect_timeout=self.settings.connect_timeout,
            on_track_start=self._announce_start if announce else None,
            on_track_failed=self._announce_failure if announce else None,
        )

    async def _post(self, session: PlaybackSession, embed: discord.Embed) -> None:
        """Best-effort message to the text channel the last /play came from."""
        if session.text_channel_id is None:
            return
        channel = self.bot.get_channel(session.text_channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(session.text_channel_id)
        if isinstance(channel, discord.abc.Messageable):
            await channel.send(embed=embed)

    async def _announce_start(self, session: PlaybackSession, track: Track) -> None:
        await self._post(session, Embedder.now_playing(track))

    async def _announce_failure(self, session: PlaybackSession, track: Track, exc: Exception) -> None:
        await self._post(session, Embedder.track_skipped(track, exc))

    # ── /play ─────────────────────────────────────────────────────────

    @app_commands.command(name="play", description="Play a song")
    @app_commands.describe(query="Song name or link (YouTube, YouTube Music, SoundCloud)")
    async def play_cmd(self, interaction: discord.Interaction, query: str) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "play", query=query))

    # ── /skip ─────────────────────────────────────────────────────────

    @app_commands.command(name="skip", description="Skip the current song")
    async def skip_cmd(self, interaction: discord.Interaction) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "skip"))

    # ── /stop ─────────────────────────────────────────────────────────

    @app_commands.command(name="stop", description="Stop music, clear the queue and leave")
    async def stop_cmd(self, interaction: discord.Interaction) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "stop"))

    # ── /queue ────────────────────────────────────────────────────────

    @app_commands.command(name="queue", description="Show the queue")
    async def queue_cmd(self, interaction: discord.Interaction) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "queue"))

    # ── /now ──────────────────────────────────────────────────────────

    @app_commands.command(name="now", description="Show what is playing now")
    async def now_cmd(self, interaction: discord.Interaction) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "now"))

    # ── /pause ────────────────────────────────────────────────────────

    @app_commands.command(name="pause", description="Pause playback")
    async def pause_cmd(self, interaction: discord.Interaction) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "pause"))

    # ── /resume ───────────────────────────────────────────────────────

    @app_commands.command(name="resume", description="Resume playback")
    async def resume_cmd(self, interaction: discord.Interaction) -> None:
        await self.dispatcher.dispatch(InteractionContext(interaction, "resume"))

    # ── Voice state change listener ───────────────────────────────────

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Follow the bot being moved, and tear down if it gets disconnected."""
        if self.bot.user is None or member.id != self.bot.user.id:
            return

        session = self.registry.get(member.guild.id)
        if session is None:
            return

        # Only act on the connection this session owns; a late event from an
        # earlier session's disconnect must not touch a newer one.
        connected = session.connected_channel_id
        if connected is None or before.channel is None or before.channel.id != connected:
            logger.debug("Ignoring voice state update for another connection in guild %d", member.guild.id)
            return

        if after.channel is None:
            logger.warning("Disconnected from voice in guild %d — stopping session", member.guild.id)
            await session.stop()
        elif after.channel.id != before.channel.id:
            logger.info("Moved to voice channel %d in guild %d", after.channel.id, member.guild.id)
            session.follow(after.channel)


# =====================================================================
#  Setup
# =====================================================================

async def setup(bot: "NaghamBot") -> None:
    await bot.add_cog(MusicCog(bot))
