"""
Cast playback models.

These mirror the media status and load payloads exchanged with a Cast media
receiver. Field aliases follow the Cast wire names (camelCase).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

from .types import IdleReason, MetadataType, PlayerState, SleepTimerPhase, StreamType

DEFAULT_CAST_PORT = 8009


@dataclass
class CastDevice(DataClassORJSONMixin):
    """A Cast device found on the local network."""

    name: str
    """Friendly device name."""
    host: str
    """IP address or hostname."""
    port: int = DEFAULT_CAST_PORT
    """Cast control port."""
    id: str | None = None
    """Device id from the mDNS TXT record."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class MediaVolume(DataClassORJSONMixin):
    """Receiver volume as reported in a media status."""

    level: float = 1.0
    muted: bool = False


@dataclass
class MediaInfo(DataClassORJSONMixin):
    """Currently loaded media as reported in a media status."""

    content_id: Annotated[str, Alias("contentId")]
    content_type: Annotated[str | None, Alias("contentType")] = None
    duration: float | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass
class MediaStatus(DataClassORJSONMixin):
    """Media status pushed or polled from a Cast receiver."""

    current_time: Annotated[float, Alias("currentTime")] = 0.0
    """Playback position in seconds."""
    player_state: Annotated[PlayerState, Alias("playerState")] = PlayerState.IDLE
    idle_reason: Annotated[IdleReason | None, Alias("idleReason")] = None
    """Only set when player_state is IDLE."""
    volume: MediaVolume | None = None
    media: MediaInfo | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
        omit_none = True


@dataclass
class MediaLoadOptions:
    """Options for loading an audiobook onto a Cast receiver."""

    url: str
    """URL of the audio stream (normally a proxy stream URL)."""
    content_type: str
    """MIME type, e.g. audio/mpeg."""
    title: str
    author: str | None = None
    chapter_title: str | None = None
    chapter_number: int | None = None
    cover_url: str | None = None
    resume_position: float | None = None
    """Resume position in seconds."""
    duration: float | None = None
    """Duration in seconds, for progress display on the device."""

    def to_media_payload(self) -> dict[str, Any]:
        """
        Build the Cast media payload.

        Uses the AUDIOBOOK_CHAPTER metadata type so Nest Hub devices can switch
        to their low-light display mode.
        """
        images = [{"url": self.cover_url}] if self.cover_url else []
        metadata: dict[str, Any] = {
            "type": MetadataType.GENERIC.value,
            "metadataType": MetadataType.AUDIOBOOK_CHAPTER.value,
            "title": self.title,
            "bookTitle": self.title,
            "images": images,
        }
        if self.author is not None:
            metadata["subtitle"] = self.author
            metadata["artist"] = self.author
        if self.chapter_title is not None:
            metadata["chapterTitle"] = self.chapter_title
        if self.chapter_number is not None:
            metadata["chapterNumber"] = self.chapter_number
        media: dict[str, Any] = {
            "contentId": self.url,
            "contentType": self.content_type,
            "streamType": StreamType.BUFFERED.value,
            "metadata": metadata,
        }
        if self.duration is not None:
            media["duration"] = self.duration
        return media

    def to_load_options(self) -> dict[str, Any]:
        """Build the Cast load request options (autoplay and resume offset)."""
        options: dict[str, Any] = {"autoplay": True}
        if self.resume_position is not None and self.resume_position > 0:
            options["currentTime"] = self.resume_position
        return options


@dataclass
class SleepTimerState(DataClassORJSONMixin):
    """Snapshot of a sleep timer."""

    active: bool
    phase: SleepTimerPhase
    remaining_ms: Annotated[int, Alias("remainingMs")]
    """Time until the fade starts; 0 when inactive."""
    position: float
    """Last known playback position in seconds."""
    total_duration_ms: Annotated[int, Alias("totalDurationMs")]
    fade_duration_ms: Annotated[int, Alias("fadeDurationMs")]

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
