"""Models for enum types used by aiobookcast."""

from enum import Enum, IntEnum


class PlayerState(Enum):
    """Player state reported by a Cast media receiver."""

    IDLE = "IDLE"
    """No media is playing (see IdleReason for why)."""
    PLAYING = "PLAYING"
    """Media is playing."""
    PAUSED = "PAUSED"
    """Media is paused."""
    BUFFERING = "BUFFERING"
    """Media is buffering."""


class IdleReason(Enum):
    """Reason a Cast media receiver went idle."""

    CANCELLED = "CANCELLED"
    """User cancelled playback."""
    INTERRUPTED = "INTERRUPTED"
    """Playback was interrupted by another load."""
    FINISHED = "FINISHED"
    """Media played to the end."""
    ERROR = "ERROR"
    """The receiver hit an error while playing."""


class MetadataType(IntEnum):
    """Cast media metadata types."""

    GENERIC = 0
    MOVIE = 1
    TV_SHOW = 2
    MUSIC_TRACK = 3
    AUDIOBOOK_CHAPTER = 4
    """Enables the low-light display mode on Nest Hub devices."""
    PHOTO = 5


class StreamType(Enum):
    """Cast stream types."""

    UNKNOWN = "UNKNOWN"
    BUFFERED = "BUFFERED"
    """Finite content."""
    LIVE = "LIVE"


class SleepTimerPhase(Enum):
    """Lifecycle phase of a sleep timer."""

    INACTIVE = "inactive"
    """Not armed."""
    COUNTDOWN = "countdown"
    """Counting down to the fade deadline."""
    FADING = "fading"
    """Fading the stream gain to silence."""
    COMPLETING = "completing"
    """Syncing the final position and pausing the device."""


class SampleFormat(Enum):
    """Raw PCM sample formats understood by the gain stage."""

    S16LE = "s16le"
    """Signed 16-bit little-endian."""
    S16BE = "s16be"
    """Signed 16-bit big-endian."""

    @property
    def numpy_dtype(self) -> str:
        """Return the numpy dtype string for this format."""
        return "<i2" if self is SampleFormat.S16LE else ">i2"

    @property
    def sample_width(self) -> int:
        """Return the number of bytes per sample."""
        return 2
