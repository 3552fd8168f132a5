"""
HTTP bodies for the audio proxy.

The proxy exposes a small JSON control surface next to its audio streams:
volume changes, session status, session deletion and a health check.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Alias

MIN_VOLUME = 0.0
MAX_VOLUME = 1.5


@dataclass
class VolumeRequest(DataClassORJSONMixin):
    """Body of POST /volume/{session_id}."""

    volume: float
    """Requested stream gain (0.0 - 1.5)."""

    def __post_init__(self) -> None:
        """Validate field values."""
        if isinstance(self.volume, bool) or not isinstance(self.volume, (int, float)):
            raise ValueError(f"volume must be a number, got {self.volume!r}")
        if not MIN_VOLUME <= self.volume <= MAX_VOLUME:
            raise ValueError(
                f"volume must be in range {MIN_VOLUME}..{MAX_VOLUME}, got {self.volume}"
            )


@dataclass
class VolumeResponse(DataClassORJSONMixin):
    """Reply to a successful volume change."""

    volume: float
    success: bool = True


@dataclass
class SuccessResponse(DataClassORJSONMixin):
    """Generic success reply."""

    success: bool = True


@dataclass
class ErrorResponse(DataClassORJSONMixin):
    """Generic error reply."""

    error: str


@dataclass
class HealthStatus(DataClassORJSONMixin):
    """Reply to GET /health."""

    sessions: int
    """Number of active stream sessions."""
    status: str = "ok"


@dataclass
class SessionStatus(DataClassORJSONMixin):
    """Reply to GET /status/{session_id}."""

    session_id: Annotated[str, Alias("sessionId")]
    book_id: Annotated[str, Alias("bookId")]
    volume: float
    """Current stream gain."""
    position: float
    """Estimated playback position in seconds."""
    running: bool
    """Whether the transcoding processes are running."""
    start_time: Annotated[int, Alias("startTime")]
    """Session creation time in epoch milliseconds."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        serialize_by_alias = True
