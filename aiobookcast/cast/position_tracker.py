"""
Playback position tracking for Cast devices.

Positions are observed two ways: status updates pushed by the receiver and a
periodic status poll. Both feed the same handler, which forwards positions to
a sync callback once they have moved by at least a threshold.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from aiobookcast.models.cast import MediaStatus
from aiobookcast.models.types import IdleReason, PlayerState
from aiobookcast.util import maybe_await

from .client import PlaybackClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 10000
DEFAULT_POSITION_THRESHOLD = 1.0

# Receives a position in seconds; may be a plain function or a coroutine function.
SyncCallback = Callable[[float], Awaitable[None] | None]
# Receives the position in seconds at which playback ended.
TerminalCallback = Callable[[float], None]


class PositionTracker:
    """Track the playback position of a PlaybackClient and sync it to a callback."""

    _poll_task: asyncio.Task[None] | None = None
    _unsubscribe: Callable[[], None] | None = None
    _tracking: bool = False
    _last_position: float = 0.0

    def __init__(
        self,
        player: PlaybackClient,
        sync_callback: SyncCallback,
        *,
        poll_interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
        position_threshold: float = DEFAULT_POSITION_THRESHOLD,
        on_playback_finished: TerminalCallback | None = None,
        on_playback_error: TerminalCallback | None = None,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            player: Client to observe.
            sync_callback: Called with each position that passes the threshold.
            poll_interval_ms: Status poll interval (default: 10000).
            position_threshold: Minimum change in seconds before syncing (default: 1).
            on_playback_finished: Called when the receiver reports IDLE/FINISHED.
            on_playback_error: Called when the receiver reports IDLE/ERROR.
        """
        self._player = player
        self._sync_callback = sync_callback
        self._poll_interval = poll_interval_ms / 1000
        self._position_threshold = position_threshold
        self._on_playback_finished = on_playback_finished
        self._on_playback_error = on_playback_error
        self._sync_tasks: set[asyncio.Task[None]] = set()

    @property
    def tracking(self) -> bool:
        """True between start() and stop()."""
        return self._tracking

    @property
    def current_position(self) -> float:
        """Last position forwarded to the sync callback, in seconds."""
        return self._last_position

    def start(self) -> None:
        """Subscribe to status updates and start polling. No-op if already tracking."""
        if self._tracking:
            return
        self._tracking = True
        self._unsubscribe = self._player.subscribe(self._handle_status)
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.debug("Position tracking started (poll every %.1fs)", self._poll_interval)

    def stop(self) -> float:
        """
        Stop tracking.

        Returns:
            The last tracked position in seconds.
        """
        self._tracking = False
        if self._poll_task is not None:
            if self._poll_task is not asyncio.current_task():
                self._poll_task.cancel()
            self._poll_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        return self._last_position

    async def _poll_loop(self) -> None:
        while self._tracking:
            await asyncio.sleep(self._poll_interval)
            if not self._tracking:
                return
            try:
                status = await self._player.get_status()
            except Exception as err:
                logger.debug("Status poll failed: %s", err)
                continue
            if status is not None:
                self._handle_status(status)

    def _handle_status(self, status: MediaStatus) -> None:
        """Handle a pushed or polled status."""
        if not self._tracking:
            return
        if status.player_state is PlayerState.IDLE:
            if status.idle_reason is IdleReason.FINISHED:
                logger.info("Playback finished at %.1fs", status.current_time)
                self.stop()
                if self._on_playback_finished is not None:
                    self._on_playback_finished(status.current_time)
            elif status.idle_reason is IdleReason.ERROR:
                logger.warning("Playback error at %.1fs", status.current_time)
                self.stop()
                if self._on_playback_error is not None:
                    self._on_playback_error(status.current_time)
            return
        if status.player_state is PlayerState.PLAYING:
            self._update_position(status.current_time)

    def _update_position(self, position: float) -> None:
        if abs(position - self._last_position) < self._position_threshold:
            return
        self._last_position = position
        task = asyncio.get_running_loop().create_task(self._sync(position))
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    async def _sync(self, position: float) -> None:
        try:
            await maybe_await(self._sync_callback(position))
        except Exception:
            logger.warning("Position sync failed at %.1fs", position, exc_info=True)
