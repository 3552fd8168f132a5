"""Playback client interface consumed by the position tracker and sleep timer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Protocol

from aiobookcast.models.cast import CastDevice, MediaLoadOptions, MediaStatus

logger = logging.getLogger(__name__)

# Callback invoked with every media status pushed by the receiver.
StatusHandler = Callable[[MediaStatus], None]


class PlaybackClient(Protocol):
    """
    A Cast-protocol media client.

    All commands raise ConnectionError when the client is not connected.
    """

    @property
    def connected(self) -> bool:
        """True while connected to a device."""

    async def connect(self, device: CastDevice) -> None:
        """Connect to a device and launch the media receiver."""

    async def disconnect(self) -> None:
        """Close the connection to the device."""

    async def load_media(self, options: MediaLoadOptions) -> MediaStatus | None:
        """Load media and start playback."""

    async def pause(self) -> None:
        """Pause playback."""

    async def play(self) -> None:
        """Resume playback."""

    async def stop(self) -> None:
        """Stop playback."""

    async def seek(self, position: float) -> None:
        """Seek to a position in seconds."""

    async def get_status(self) -> MediaStatus | None:
        """Poll the current media status; None when no media is loaded."""

    def subscribe(self, handler: StatusHandler) -> Callable[[], None]:
        """
        Register a handler for pushed media status updates.

        Returns a function that removes the handler.
        """


class StatusEmitter:
    """Subscription list for media status updates, for use by PlaybackClient implementations."""

    def __init__(self) -> None:
        """Initialize with no subscribers."""
        self._handlers: list[StatusHandler] = []

    @property
    def subscriber_count(self) -> int:
        """Number of registered handlers."""
        return len(self._handlers)

    def subscribe(self, handler: StatusHandler) -> Callable[[], None]:
        """Register a handler. Returns a function to remove it."""
        self._handlers.append(handler)

        def _remove() -> None:
            with suppress(ValueError):
                self._handlers.remove(handler)

        return _remove

    def emit(self, status: MediaStatus) -> None:
        """Deliver a status to every handler registered at the time of the call."""
        for handler in list(self._handlers):
            try:
                handler(status)
            except Exception:
                logger.exception("Error in media status handler")

    def clear(self) -> None:
        """Remove all handlers."""
        self._handlers.clear()
