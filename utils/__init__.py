from utils.embedder import Embedder
from utils.playback import PlaybackSession, SessionRegistry
from utils.track_resolver import Track, TrackResolver

__all__ = [
    "Embedder",
    "PlaybackSession",
    "SessionRegistry",
    "Track",
    "TrackResolver",
]
