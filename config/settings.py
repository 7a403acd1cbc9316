"""
Application settings loaded from environment variables.
All configuration is centralized here for easy management.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from config.constants import (
    CONNECT_TIMEOUT,
    QUEUE_PAGE_SIZE,
    RESOLVE_TIMEOUT,
    SEARCH_CACHE_TTL,
    STREAM_FORMATS,
)

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _parse_optional_int(raw: str) -> Optional[int]:
    raw = raw.strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_bool(raw: str, default: bool) -> bool:
    """Parse a yes/no style env value, falling back to *default*."""
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    return default


def _parse_int(raw: str, default: int) -> int:
    """Parse an integer env value; blank or malformed input gives *default*."""
    parsed = _parse_optional_int(raw)
    return default if parsed is None else parsed


def _parse_float(raw: str, default: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable application settings loaded once at startup."""

    # Discord
    discord_token: str = field(default_factory=lambda: os.getenv("DISCORD_TOKEN", ""))
    application_id: Optional[int] = field(
        default_factory=lambda: _parse_optional_int(
            os.getenv("DISCORD_APPLICATION_ID", "") or os.getenv("CLIENT_ID", "")
        )
    )
    # When set, slash commands are synced to this guild only (instant update)
    guild_id: Optional[int] = field(
        default_factory=lambda: _parse_optional_int(os.getenv("GUILD_ID", ""))
    )

    # Bot
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    announce_tracks: bool = field(
        default_factory=lambda: _parse_bool(os.getenv("ANNOUNCE_TRACKS", ""), True)
    )

    # Playback
    resolve_timeout: float = field(
        default_factory=lambda: _parse_float(os.getenv("RESOLVE_TIMEOUT", ""), RESOLVE_TIMEOUT)
    )
    connect_timeout: float = field(
        default_factory=lambda: _parse_float(os.getenv("CONNECT_TIMEOUT", ""), CONNECT_TIMEOUT)
    )
    stream_quality: str = field(
        default_factory=lambda: os.getenv("STREAM_QUALITY", "high").strip().lower()
    )
    search_cache_ttl: float = field(
        default_factory=lambda: _parse_float(os.getenv("SEARCH_CACHE_TTL", ""), SEARCH_CACHE_TTL)
    )
    queue_page_size: int = field(
        default_factory=lambda: _parse_int(os.getenv("QUEUE_PAGE_SIZE", ""), QUEUE_PAGE_SIZE)
    )

    # Health server
    health_server: bool = field(
        default_factory=lambda: _parse_bool(os.getenv("HEALTH_SERVER", ""), True)
    )
    port: int = field(default_factory=lambda: _parse_int(os.getenv("PORT", ""), 8080))

    # ── Helpers ──────────────────────────────────────────────────────
    def validate(self) -> List[str]:
        """Return a list of validation errors (empty = OK)."""
        errors: List[str] = []
        if not self.discord_token:
            errors.append("DISCORD_TOKEN is required")
        if self.stream_quality not in STREAM_FORMATS:
            errors.append(
                f"STREAM_QUALITY must be one of: {', '.join(sorted(STREAM_FORMATS))}"
            )
        if self.resolve_timeout <= 0:
            errors.append("RESOLVE_TIMEOUT must be positive")
        if self.connect_timeout <= 0:
            errors.append("CONNECT_TIMEOUT must be positive")
        if self.queue_page_size <= 0:
            errors.append("QUEUE_PAGE_SIZE must be positive")
        if not 0 < self.port < 65536:
            errors.append("PORT must be between 1 and 65535")
        return errors
