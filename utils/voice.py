"""
discord.py implementations of the voice interfaces used by
:mod:`utils.playback`.

System requirement:
    FFmpeg must be installed on the host system (e.g. ``apt install ffmpeg``)
    and discord.py needs its voice extra (PyNaCl) for playback to work.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Optional, Set

import discord

from config.constants import (
    CONNECT_TIMEOUT,
    DEFAULT_VOLUME,
    FFMPEG_BEFORE_OPTIONS,
    FFMPEG_OPTIONS,
)
from utils.playback import PlayerEvent, PlayerListener
from utils.track_resolver import StreamHandle

logger = logging.getLogger(__name__)


def ffmpeg_before_options(stream: StreamHandle) -> str:
    """Build FFmpeg input options, forwarding the extractor's HTTP headers."""
    if not stream.http_headers:
        return FFMPEG_BEFORE_OPTIONS
    blob = "".join(f"{key}: {value}\r\n" for key, value in stream.http_headers.items())
    return f"{FFMPEG_BEFORE_OPTIONS} -headers {shlex.quote(blob)}"


class DiscordAudioPlayer:
    """Plays FFmpeg sources through a guild's ``discord.VoiceClient``.

    discord.py calls the ``after`` hook on its audio thread; the event is
    handed back to the event loop before the listener runs.
    """

    def __init__(self, *, volume: float = DEFAULT_VOLUME) -> None:
        self.volume = volume
        self._voice_client: Optional[discord.VoiceClient] = None
        self._listener: Optional[PlayerListener] = None
        self._tasks: Set[asyncio.Task] = set()

    def attach(self, voice_client: discord.VoiceClient) -> None:
        self._voice_client = voice_client

    def set_listener(self, listener: PlayerListener) -> None:
        self._listener = listener

    def create_resource(self, stream: StreamHandle) -> discord.AudioSource:
        source = discord.FFmpegPCMAudio(
            stream.url,
            before_options=ffmpeg_before_options(stream),
            options=FFMPEG_OPTIONS,
        )
        return discord.PCMVolumeTransformer(source, volume=self.volume)

    def play(self, resource: discord.AudioSource) -> None:
        if self._voice_client is None or not self._voice_client.is_connected():
            raise discord.ClientException("Not connected to voice.")
        loop = asyncio.get_running_loop()

        def after(error: Optional[Exception]) -> None:
            event = PlayerEvent.ERROR if error else PlayerEvent.IDLE
            loop.call_soon_threadsafe(self._dispatch, event, error)

        self._voice_client.play(resource, after=after)

    def _dispatch(self, event: PlayerEvent, error: Optional[Exception]) -> None:
        if self._listener is None:
            return
        task = asyncio.ensure_future(self._listener(event, error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def pause(self) -> bool:
        vc = self._voice_client
        if vc is None or not vc.is_playing():
            return False
        vc.pause()
        return True

    def unpause(self) -> bool:
        vc = self._voice_client
        if vc is None or not vc.is_paused():
            return False
        vc.resume()
        return True

    def stop(self, force: bool = False) -> None:
        """Stop the current source.  discord.py always stops immediately."""
        vc = self._voice_client
        if vc is not None and (vc.is_playing() or vc.is_paused()):
            vc.stop()


class DiscordVoiceConnection:
    """Wraps a connected ``discord.VoiceClient``."""

    def __init__(self, voice_client: discord.VoiceClient) -> None:
        self.voice_client = voice_client

    @property
    def channel_id(self) -> Optional[int]:
        channel = self.voice_client.channel
        return channel.id if channel else None

    def subscribe(self, player: DiscordAudioPlayer) -> None:
        player.attach(self.voice_client)

    async def destroy(self) -> None:
        await self.voice_client.disconnect(force=True)


class DiscordVoiceTransport:
    """Opens voice connections with discord.py's built-in ready wait."""

    def __init__(self, *, timeout: float = CONNECT_TIMEOUT) -> None:
        self.timeout = timeout

    async def connect(self, channel: discord.VoiceChannel) -> DiscordVoiceConnection:
        existing = channel.guild.voice_client
        if existing is not None:
            # Left over from a session that is still shutting down
            logger.debug("Dropping leftover voice client in guild %d", channel.guild.id)
            await existing.disconnect(force=True)
        voice_client = await channel.connect(self_deaf=True, timeout=self.timeout)
        return DiscordVoiceConnection(voice_client)
