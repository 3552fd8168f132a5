"""Models for aiobookcast: Cast media status, proxy HTTP bodies and library data."""

from __future__ import annotations

__all__ = [
    "DEFAULT_CAST_PORT",
    "CastDevice",
    "ErrorResponse",
    "HealthStatus",
    "IdleReason",
    "MediaInfo",
    "MediaLoadOptions",
    "MediaStatus",
    "MediaVolume",
    "MetadataType",
    "PlayerState",
    "Progress",
    "SampleFormat",
    "SessionStatus",
    "SleepTimerPhase",
    "SleepTimerState",
    "StreamType",
    "SuccessResponse",
    "VolumeRequest",
    "VolumeResponse",
    "cast",
    "library",
    "proxy",
    "types",
]

from . import cast, library, proxy, types
from .cast import (
    DEFAULT_CAST_PORT,
    CastDevice,
    MediaInfo,
    MediaLoadOptions,
    MediaStatus,
    MediaVolume,
    SleepTimerState,
)
from .library import Progress
from .proxy import (
    ErrorResponse,
    HealthStatus,
    SessionStatus,
    SuccessResponse,
    VolumeRequest,
    VolumeResponse,
)
from .types import (
    IdleReason,
    MetadataType,
    PlayerState,
    SampleFormat,
    SleepTimerPhase,
    StreamType,
)
