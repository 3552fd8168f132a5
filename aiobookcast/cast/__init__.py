"""Public interface for the Cast playback package."""

from .client import PlaybackClient, StatusEmitter, StatusHandler
from .discovery import DeviceDiscovery
from .position_tracker import PositionTracker
from .sleep_timer import CastSleepTimer

__all__ = [
    "CastSleepTimer",
    "DeviceDiscovery",
    "PlaybackClient",
    "PositionTracker",
    "StatusEmitter",
    "StatusHandler",
]
