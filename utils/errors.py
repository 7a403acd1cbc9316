"""
Error taxonomy for music commands.

Every error carries a short title and a user-facing message so the
dispatcher can turn it into an embed without knowing where it came from.
"""

from __future__ import annotations


class MusicError(Exception):
    """Base exception for anything reported back to the command caller."""

    title = "Something went wrong"
    user_message = "An unexpected error occurred. Please try again later."
    # Validation failures are shown as warnings, everything else as errors
    is_validation = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.user_message)
        self.user_message = message or self.user_message


class NoVoiceChannel(MusicError):
    title = "Not in VC"
    user_message = "\U0001f50a Join a voice channel first!"
    is_validation = True


class ChannelMismatch(MusicError):
    title = "Busy Elsewhere"
    user_message = (
        "I’m already playing in another voice channel. "
        "Use `/stop` there first, then play here."
    )
    is_validation = True


class NoActiveSession(MusicError):
    title = "Nothing Playing"
    user_message = "There’s nothing playing right now."
    is_validation = True


class TrackNotFound(MusicError):
    title = "No Results"
    user_message = "❌ Couldn’t find anything for that search or link."


class ResolveTimeout(TrackNotFound):
    """Lookup took too long; treated like "no result" by callers."""

    title = "Search Timed Out"
    user_message = "⏱ The search took too long. Please try again."


class ConnectionTimeout(MusicError):
    title = "Connection Error"
    user_message = "❌ Could not join the voice channel in time."


class StreamOpenFailure(MusicError):
    title = "Stream Unavailable"
    user_message = "❌ Could not open an audio stream for this track."


class PlayerRejected(MusicError):
    title = "Not Possible"
    user_message = "The player couldn’t do that right now."
    is_validation = True


class UnexpectedFailure(MusicError):
    pass
