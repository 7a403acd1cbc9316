"""
Track resolution on top of yt-dlp.

Turns whatever the user typed into ``/play`` (a link or plain search
words) into a :class:`Track`, and later opens a direct audio stream for
that track right before it is played.

Supported links:
    • YouTube          (youtube.com/watch, youtube.com/shorts, youtu.be)
    • YouTube Music    (music.youtube.com/watch)
    • SoundCloud       (soundcloud.com/<user>/<track>)

yt-dlp is blocking, so every call runs on a small dedicated thread
pool and is bounded by a timeout.  Nothing is retried: a failed lookup
is reported to the caller straight away.
"""

from __future__ import annotations

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, Optional, Protocol

import yt_dlp
from cachetools import TTLCache

from config.constants import (
    RESOLVE_TIMEOUT,
    RESOLVER_WORKERS,
    SEARCH_CACHE_SIZE,
    SEARCH_CACHE_TTL,
    STREAM_FORMATS,
    YTDL_BASE_OPTIONS,
)
from utils.errors import ResolveTimeout, StreamOpenFailure, TrackNotFound

logger = logging.getLogger(__name__)

# =====================================================================
#  URL patterns
# =====================================================================

URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

# youtube.com/watch?v=XXXX  |  youtube.com/shorts/XXXX  |  youtu.be/XXXX
YT_PATTERN = re.compile(
    r"^https?://"
    r"(?:"
    r"(?:www\.|m\.|music\.)?youtube\.com/(?:watch\?(?:.*&)?v=|shorts/)([a-zA-Z0-9_-]{11})"
    r"|"
    r"youtu\.be/([a-zA-Z0-9_-]{11})"
    r")",
    re.IGNORECASE,
)

# soundcloud.com/<user>/<track>  (not sets, playlists, or user pages)
SOUNDCLOUD_PATTERN = re.compile(
    r"^https?://(?:www\.|m\.)?soundcloud\.com/([a-zA-Z0-9_-]+)/(?!sets(?:/|$))([a-zA-Z0-9_-]+)/?(?:\?|$|#)",
    re.IGNORECASE,
)


def looks_like_url(text: str) -> bool:
    """Return True if *text* should be treated as a link rather than search words."""
    return bool(URL_PATTERN.match(text.strip()))


def is_supported_url(text: str) -> bool:
    """Check *text* against the link grammar of the supported platforms."""
    text = text.strip()
    return bool(YT_PATTERN.match(text) or SOUNDCLOUD_PATTERN.match(text))


# =====================================================================
#  Data
# =====================================================================

@dataclass(frozen=True)
class Track:
    """A resolved, playable song."""

    title: str
    url: str
    requested_by: str


@dataclass(frozen=True)
class StreamHandle:
    """Direct media URL plus the HTTP headers needed to fetch it."""

    url: str
    http_headers: Dict[str, str] = field(default_factory=dict)


class SearchSource(Protocol):
    """The blocking search/extraction backend the resolver drives."""

    def search_top1(self, text: str) -> Optional[Dict[str, str]]: ...

    def validate_url(self, text: str) -> bool: ...

    def fetch_metadata(self, url: str) -> Optional[Dict[str, str]]: ...

    def open_stream(self, url: str, quality: str) -> Optional[StreamHandle]: ...


# =====================================================================
#  yt-dlp backend
# =====================================================================

def _first_entry(info: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Unwrap search / playlist results to their first real entry."""
    if not info:
        return None
    if "entries" in info:
        for entry in info.get("entries") or []:
            if entry:
                return entry
        return None
    return info


class YtDlpSource:
    """Blocking yt-dlp calls.  Run these off the event loop."""

    def __init__(self, cookies_path: Optional[str] = None) -> None:
        self._base_opts: Dict[str, Any] = dict(YTDL_BASE_OPTIONS)
        if cookies_path:
            self._base_opts["cookiefile"] = cookies_path

    def _extract(self, target: str, *, process: bool = True, **extra: Any) -> Optional[Dict[str, Any]]:
        opts = {**self._base_opts, **extra}
        with yt_dlp.YoutubeDL(opts) as ydl:
            return ydl.extract_info(target, download=False, process=process)

    def search_top1(self, text: str) -> Optional[Dict[str, str]]:
        info = self._extract(f"ytsearch1:{text}", extract_flat="in_playlist")
        entry = _first_entry(info)
        if not entry:
            return None
        url = entry.get("webpage_url") or entry.get("url")
        if not url:
            return None
        return {"title": entry.get("title") or "Unknown", "url": url}

    def validate_url(self, text: str) -> bool:
        return is_supported_url(text)

    def fetch_metadata(self, url: str) -> Optional[Dict[str, str]]:
        entry = _first_entry(self._extract(url, process=False))
        if not entry:
            return None
        return {
            "title": entry.get("title") or "Unknown",
            "url": entry.get("webpage_url") or url,
        }

    def open_stream(self, url: str, quality: str) -> Optional[StreamHandle]:
        fmt = STREAM_FORMATS.get(quality, STREAM_FORMATS["high"])
        entry = _first_entry(self._extract(url, format=fmt))
        if not entry or not entry.get("url"):
            return None
        return StreamHandle(
            url=entry["url"],
            http_headers=dict(entry.get("http_headers") or {}),
        )


# =====================================================================
#  Resolver
# =====================================================================

class TrackResolver:
    """Async front-end over a :class:`SearchSource` with timeouts and a search cache."""

    def __init__(
        self,
        source: Optional[SearchSource] = None,
        *,
        timeout: float = RESOLVE_TIMEOUT,
        quality: str = "high",
        cache_ttl: float = SEARCH_CACHE_TTL,
        workers: int = RESOLVER_WORKERS,
    ) -> None:
        self.source: SearchSource = source or YtDlpSource()
        self.timeout = timeout
        self.quality = quality
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resolver")
        self._search_cache: TTLCache[str, Dict[str, str]] = TTLCache(
            maxsize=SEARCH_CACHE_SIZE, ttl=cache_ttl
        )

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(self._executor, partial(func, *args)),
            timeout=self.timeout,
        )

    async def resolve(self, query: str, requested_by: str) -> Track:
        """Resolve *query* to a Track.

        Raises ``TrackNotFound`` when nothing matches and ``ResolveTimeout``
        (a ``TrackNotFound``) when the backend takes longer than ``timeout``.
        """
        query = query.strip()
        if not query:
            raise TrackNotFound()

        if looks_like_url(query):
            if not self.source.validate_url(query):
                logger.info("Rejected unsupported link: %s", query)
                raise TrackNotFound("❌ That link isn’t supported. Try a YouTube or SoundCloud link.")
            found = await self._lookup(self.source.fetch_metadata, query)
        else:
            key = query.lower()
            found = self._search_cache.get(key)
            if found is None:
                found = await self._lookup(self.source.search_top1, query)
                if found:
                    self._search_cache[key] = found

        if not found or not found.get("url"):
            raise TrackNotFound()

        return Track(
            title=found.get("title") or "Unknown",
            url=found["url"],
            requested_by=requested_by,
        )

    async def _lookup(self, func: Callable[[str], Optional[Dict[str, str]]], query: str) -> Optional[Dict[str, str]]:
        try:
            return await self._call(func, query)
        except asyncio.TimeoutError:
            logger.warning("Lookup timed out after %.0fs for '%s'", self.timeout, query)
            raise ResolveTimeout()
        except Exception as exc:
            logger.warning("Lookup failed for '%s': %s", query, exc)
            return None

    async def open_stream(self, track: Track) -> StreamHandle:
        """Extract a fresh audio stream for *track* (stream URLs expire, never cached)."""
        try:
            stream = await self._call(self.source.open_stream, track.url, self.quality)
        except asyncio.TimeoutError as exc:
            raise StreamOpenFailure(f"❌ Timed out opening **{track.title}**.") from exc
        except Exception as exc:
            raise StreamOpenFailure(f"❌ Could not open **{track.title}**.") from exc
        if stream is None:
            raise StreamOpenFailure(f"❌ No audio stream found for **{track.title}**.")
        return stream

    def shutdown(self) -> None:
        """Stop the worker threads (pending lookups are abandoned)."""
        self._executor.shutdown(wait=False)
