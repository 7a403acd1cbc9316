"""
Bot-wide constants and default values.
"""

# ── Bot Identity ─────────────────────────────────────────────────────
BOT_NAME = "Nagham"
BOT_COLOR = 0x1ABC9C  # Teal theme
BOT_ERROR_COLOR = 0xE74C3C  # Red
BOT_SUCCESS_COLOR = 0x2ECC71  # Green
BOT_INFO_COLOR = 0x3498DB  # Blue
BOT_WARN_COLOR = 0xF39C12  # Orange

# ── Discord limits ───────────────────────────────────────────────────
MAX_EMBED_DESC = 4096
MAX_TITLE_LEN = 256

# ── Timeouts ─────────────────────────────────────────────────────────
RESOLVE_TIMEOUT = 15   # seconds per search / metadata / stream extraction
CONNECT_TIMEOUT = 20   # seconds to wait for the voice connection to be ready
SEARCH_CACHE_TTL = 600  # 10 min cache for repeated text searches
SEARCH_CACHE_SIZE = 256

# ── Queue display ────────────────────────────────────────────────────
QUEUE_PAGE_SIZE = 10  # tracks listed by /queue

# ── yt-dlp ───────────────────────────────────────────────────────────
RESOLVER_WORKERS = 4
STREAM_FORMATS = {
    "high": "bestaudio/best",
    "low": "worstaudio/worst",
}
YTDL_BASE_OPTIONS = {
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    "source_address": "0.0.0.0",  # bind to ipv4
    "socket_timeout": 10,
    "logtostderr": False,
}

# ── FFmpeg / voice ───────────────────────────────────────────────────
# NOTE: FFmpeg must be installed on the host system for VC playback.
FFMPEG_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5 -nostdin"
FFMPEG_OPTIONS = "-vn"
DEFAULT_VOLUME = 0.5

# ── Branding (user-facing) ───────────────────────────────────────────
BRAND = "Nagham \U0001f3b6"
