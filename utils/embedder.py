"""
Standardized Discord embed builder for consistent bot responses.
"""

from __future__ import annotations

import datetime
from typing import List, Optional, Tuple

import discord
from discord.utils import escape_markdown

from config.constants import (
    BOT_COLOR,
    BOT_ERROR_COLOR,
    BOT_INFO_COLOR,
    BOT_NAME,
    BOT_SUCCESS_COLOR,
    BOT_WARN_COLOR,
    BRAND,
    MAX_EMBED_DESC,
    MAX_TITLE_LEN,
    QUEUE_PAGE_SIZE,
)
from utils.errors import MusicError
from utils.track_resolver import Track


class Embedder:
    """Factory for creating consistent, branded Discord embeds."""

    @staticmethod
    def _base(
        title: str,
        description: str,
        color: int,
        *,
        footer: Optional[str] = None,
    ) -> discord.Embed:
        if len(description) > MAX_EMBED_DESC:
            description = description[: MAX_EMBED_DESC - 2] + "\n…"
        embed = discord.Embed(
            title=title,
            description=description,
            color=color,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
        )
        embed.set_footer(text=footer or f"🎶 {BOT_NAME}")
        return embed

    # ── Standard Embed Types ─────────────────────────────────────────

    @classmethod
    def standard(
        cls,
        title: str,
        description: str,
        *,
        fields: Optional[List[Tuple[str, str, bool]]] = None,
        footer: Optional[str] = None,
        thumbnail: Optional[str] = None,
    ) -> discord.Embed:
        """Create a standard themed embed."""
        embed = cls._base(title, description, BOT_COLOR, footer=footer)
        if thumbnail:
            embed.set_thumbnail(url=thumbnail)
        for name, value, inline in (fields or []):
            embed.add_field(name=name, value=value, inline=inline)
        return embed

    @classmethod
    def success(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"✅ {title}", description, BOT_SUCCESS_COLOR)

    @classmethod
    def error(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"❌ {title}", description, BOT_ERROR_COLOR)

    @classmethod
    def warning(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"⚠️ {title}", description, BOT_WARN_COLOR)

    @classmethod
    def info(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"ℹ️ {title}", description, BOT_INFO_COLOR)

    # ── Specialized Embeds ───────────────────────────────────────────

    @classmethod
    def from_error(cls, exc: MusicError) -> discord.Embed:
        """Warning for caller mistakes, error for everything else."""
        if exc.is_validation:
            return cls.warning(exc.title, exc.user_message)
        return cls.error(exc.title, exc.user_message)

    # ── Music Embeds ─────────────────────────────────────────────────

    @staticmethod
    def track_link(track: Track) -> str:
        """Markdown link to *track*, safe against titles containing markup."""
        return f"[{escape_markdown(track.title)[:MAX_TITLE_LEN]}]({track.url})"

    @classmethod
    def track_line(cls, index: int, track: Track) -> str:
        return f"{index}) {cls.track_link(track)} — {track.requested_by}"

    @classmethod
    def now_playing(cls, track: Track) -> discord.Embed:
        return cls.standard(
            "\U0001f3a7 Now Playing",
            cls.track_link(track),
            fields=[("Requested by", track.requested_by, True)],
            footer=BRAND,
        )

    @classmethod
    def queued(cls, track: Track, position: int, *, started: bool = False) -> discord.Embed:
        """Reply to /play: "Now Playing" if the track started right away."""
        if started:
            return cls.now_playing(track)
        return cls.standard(
            "✅ Added to Queue",
            f"{cls.track_link(track)}\nPosition: #{position}",
            fields=[("Requested by", track.requested_by, True)],
            footer=BRAND,
        )

    @classmethod
    def track_skipped(cls, track: Track, exc: Exception) -> discord.Embed:
        message = exc.user_message if isinstance(exc, MusicError) else str(exc)
        return cls.warning("Track Skipped", f"{cls.track_link(track)}\n{message}")

    @classmethod
    def queue_listing(
        cls,
        current: Optional[Track],
        upcoming: List[Track],
        *,
        paused: bool = False,
        page_size: int = QUEUE_PAGE_SIZE,
    ) -> discord.Embed:
        """Current track plus the next *page_size* queued tracks."""
        if current is not None:
            state = " (paused)" if paused else ""
            lines = [f"\U0001f3b6 **Now{state}:** {cls.track_link(current)}"]
        else:
            lines = ["\U0001f3b6 **Now:** nothing"]

        lines += ["", "**Up next:**"]
        if upcoming:
            lines.extend(cls.track_line(i, t) for i, t in enumerate(upcoming[:page_size], 1))
        else:
            lines.append("—")

        hidden = len(upcoming) - page_size
        if hidden > 0:
            footer = f"…and {hidden} more • {BRAND}"
        else:
            footer = f"{len(upcoming)} track{'s' if len(upcoming) != 1 else ''} queued • {BRAND}"
        return cls.standard("\U0001f4c3 Queue", "\n".join(lines), footer=footer)
