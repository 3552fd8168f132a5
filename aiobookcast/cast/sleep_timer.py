"""
Sleep timer with a silent fade-out.

The timer counts down, keeps the playback position fresh by polling the
Cast device, fades the proxy stream's gain to silence when the deadline
passes, then pauses the device and reports the final position. The device
volume is never touched, so the receiver never plays its volume sound.

Phases: inactive -> countdown -> fading -> completing -> inactive.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from aiobookcast.models.cast import SleepTimerState
from aiobookcast.models.types import PlayerState, SleepTimerPhase
from aiobookcast.proxy.fade import DEFAULT_FADE_STEPS, CancelToken, FadeResult, fade_out
from aiobookcast.proxy.gain import GainStage
from aiobookcast.util import maybe_await

from .client import PlaybackClient

logger = logging.getLogger(__name__)

DEFAULT_FADE_DURATION_MS = 30000
DEFAULT_SYNC_INTERVAL_MS = 10000
DEFAULT_LATENCY_COMPENSATION_MS = 2000
DEFAULT_PROGRESS_INTERVAL_MS = 1000


class CastSleepTimer:
    """
    Sleep timer that fades a GainStage out and then pauses a PlaybackClient.

    Only one run can be active at a time. start() returns once the run has
    ended, whether it completed, was cancelled, or stopped early because
    playback ended or the device became unreachable.
    """

    _phase: SleepTimerPhase = SleepTimerPhase.INACTIVE
    _end_time: float = 0.0
    """Fade deadline on the event loop clock."""
    _last_position: float = 0.0
    _loop: asyncio.AbstractEventLoop | None = None
    _cancel_token: CancelToken | None = None
    _done: asyncio.Future[None] | None = None
    _deadline: asyncio.TimerHandle | None = None
    _progress_task: asyncio.Task[None] | None = None
    _sync_task: asyncio.Task[None] | None = None
    _stop_task: asyncio.Task[None] | None = None

    def __init__(
        self,
        cast_client: PlaybackClient,
        gain_stage: GainStage,
        *,
        duration_ms: float,
        fade_duration_ms: float = DEFAULT_FADE_DURATION_MS,
        fade_steps: int = DEFAULT_FADE_STEPS,
        sync_interval_ms: float = DEFAULT_SYNC_INTERVAL_MS,
        latency_compensation_ms: float = DEFAULT_LATENCY_COMPENSATION_MS,
        progress_interval_ms: float = DEFAULT_PROGRESS_INTERVAL_MS,
        on_progress: Callable[[int], None] | None = None,
        on_position_sync: Callable[[float], Awaitable[None] | None] | None = None,
        on_complete: Callable[[float], None] | None = None,
        on_error: Callable[[Exception, float], None] | None = None,
    ) -> None:
        """
        Initialize the sleep timer.

        Args:
            cast_client: Client used to poll status and pause playback.
            gain_stage: Gain stage of the proxy session that is playing.
            duration_ms: Time until the fade starts.
            fade_duration_ms: Fade duration (default: 30000).
            fade_steps: Number of fade steps (default: 30).
            sync_interval_ms: Position poll/sync interval (default: 10000).
            latency_compensation_ms: How much earlier to start the fade to
                make up for buffering between the proxy and the speaker
                (default: 2000).
            progress_interval_ms: Interval of on_progress reports (default: 1000).
            on_progress: Called with the remaining milliseconds during countdown.
            on_position_sync: Called with each polled position; may be a coroutine function.
            on_complete: Called with the final position after fade and pause.
            on_error: Called with the error and last known position.
        """
        if duration_ms < 0:
            raise ValueError(f"duration_ms must not be negative, got {duration_ms}")
        if fade_duration_ms < 0:
            raise ValueError(f"fade_duration_ms must not be negative, got {fade_duration_ms}")
        if fade_steps <= 0:
            raise ValueError(f"fade_steps must be positive, got {fade_steps}")
        if sync_interval_ms <= 0 or progress_interval_ms <= 0:
            raise ValueError("sync_interval_ms and progress_interval_ms must be positive")
        self._cast_client = cast_client
        self._gain_stage = gain_stage
        self._duration_ms = duration_ms
        self._fade_duration_ms = fade_duration_ms
        self._fade_steps = fade_steps
        self._sync_interval = sync_interval_ms / 1000
        self._latency_compensation_ms = latency_compensation_ms
        self._progress_interval = progress_interval_ms / 1000
        self._on_progress = on_progress
        self._on_position_sync = on_position_sync
        self._on_complete = on_complete
        self._on_error = on_error

    @property
    def phase(self) -> SleepTimerPhase:
        """Current phase."""
        return self._phase

    @property
    def active(self) -> bool:
        """True unless the timer is inactive."""
        return self._phase is not SleepTimerPhase.INACTIVE

    @property
    def position(self) -> float:
        """Last known playback position in seconds."""
        return self._last_position

    @property
    def remaining_ms(self) -> int:
        """Milliseconds until the fade starts; 0 when inactive, never negative."""
        if self._phase is SleepTimerPhase.INACTIVE or self._loop is None:
            return 0
        return max(0, int((self._end_time - self._loop.time()) * 1000))

    @property
    def state(self) -> SleepTimerState:
        """Snapshot of the timer."""
        return SleepTimerState(
            active=self.active,
            phase=self._phase,
            remaining_ms=self.remaining_ms,
            position=self._last_position,
            total_duration_ms=int(self._duration_ms),
            fade_duration_ms=int(self._fade_duration_ms),
        )

    async def start(self) -> None:
        """
        Arm the timer and wait until the run ends.

        Cancelling the awaiting task cancels the timer.

        Raises:
            RuntimeError: If the timer is already running.
        """
        if self._phase is not SleepTimerPhase.INACTIVE:
            raise RuntimeError("Sleep timer is already running")

        loop = self._loop = asyncio.get_running_loop()
        self._phase = SleepTimerPhase.COUNTDOWN
        self._end_time = loop.time() + (self._duration_ms - self._latency_compensation_ms) / 1000
        token = self._cancel_token = CancelToken()
        done = self._done = loop.create_future()
        logger.info(
            "Sleep timer started: %.0fs, fade %.0fs",
            self._duration_ms / 1000,
            self._fade_duration_ms / 1000,
        )

        try:
            await self._poll_position()
            if not token.cancelled:
                self._sync_task = loop.create_task(self._sync_loop(token))
                self._progress_task = loop.create_task(self._progress_loop(token))
                delay = max(0.0, self._end_time - loop.time())
                self._deadline = loop.call_later(delay, self._on_deadline)
            await done
        except asyncio.CancelledError:
            if self._cancel_token is token:
                self.cancel()
            raise

    def cancel(self) -> float:
        """
        Cancel the timer, aborting a fade in progress.

        Returns:
            The last known playback position in seconds.
        """
        position = self._last_position
        if self._phase is not SleepTimerPhase.INACTIVE:
            logger.info("Sleep timer cancelled during %s", self._phase.value)
        if self._cancel_token is not None:
            self._cancel_token.cancel()
        self._cleanup()
        return position

    def _cleanup(self) -> None:
        """Return to inactive, stop all tickers and release start()."""
        self._phase = SleepTimerPhase.INACTIVE
        current = asyncio.current_task()
        for task in (self._progress_task, self._sync_task):
            if task is not None and task is not current:
                task.cancel()
        self._progress_task = None
        self._sync_task = None
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._cancel_token is not None:
            # Ends the loops of this run; a running fade wakes up through it too
            self._cancel_token.cancel()
            self._cancel_token = None
        if self._done is not None:
            if not self._done.done():
                self._done.set_result(None)
            self._done = None

    def _report_error(self, err: Exception) -> None:
        logger.warning("Sleep timer error during %s: %s", self._phase.value, err)
        if self._on_error is not None:
            self._on_error(err, self._last_position)

    async def _poll_position(self) -> None:
        """Poll the device and forward the position; end the run if playback ended or failed."""
        if self._phase is SleepTimerPhase.INACTIVE:
            return
        try:
            if not self._cast_client.connected:
                raise ConnectionError("Cast client not connected")
            status = await self._cast_client.get_status()
            if status is None:
                return
            if status.player_state is PlayerState.IDLE:
                logger.info("Playback ended before the sleep timer, stopping timer")
                self._cleanup()
                return
            self._last_position = status.current_time
            if self._on_position_sync is not None:
                await maybe_await(self._on_position_sync(self._last_position))
        except Exception as err:
            self._report_error(err)
            self._cleanup()

    async def _sync_loop(self, token: CancelToken) -> None:
        while not await token.sleep(self._sync_interval):
            await self._poll_position()

    async def _progress_loop(self, token: CancelToken) -> None:
        while not await token.sleep(self._progress_interval):
            if self._phase is SleepTimerPhase.COUNTDOWN and self._on_progress is not None:
                self._on_progress(self.remaining_ms)

    def _on_deadline(self) -> None:
        self._deadline = None
        assert self._loop is not None
        self._stop_task = self._loop.create_task(self._execute_stop())
        self._stop_task.add_done_callback(self._on_stop_done)

    def _on_stop_done(self, task: asyncio.Task[None]) -> None:
        if self._stop_task is task:
            self._stop_task = None
        if task.cancelled():
            return
        if (err := task.exception()) is not None:
            logger.error("Sleep timer failed to finish", exc_info=err)

    async def _execute_stop(self) -> None:
        """Fade out, then sync the final position and pause."""
        token = self._cancel_token
        if self._phase is not SleepTimerPhase.COUNTDOWN or token is None:
            return

        self._phase = SleepTimerPhase.FADING
        logger.info("Sleep timer expired, fading out over %.1fs", self._fade_duration_ms / 1000)
        if self._progress_task is not None:
            self._progress_task.cancel()
            self._progress_task = None

        fade_result: FadeResult | None = None
        try:
            fade_result = await fade_out(
                self._gain_stage,
                self._fade_duration_ms,
                steps=self._fade_steps,
                cancel_token=token,
            )
        except Exception as err:
            self._report_error(err)

        if token.cancelled or (fade_result is not None and fade_result.cancelled):
            # Cancelled runs have already been cleaned up
            return

        self._phase = SleepTimerPhase.COMPLETING
        if self._sync_task is not None:
            self._sync_task.cancel()
            self._sync_task = None

        try:
            status = await self._cast_client.get_status()
        except Exception as err:
            logger.debug("Final position poll failed, using last known position: %s", err)
        else:
            if status is not None:
                self._last_position = status.current_time
        if token.cancelled:
            return

        if self._on_position_sync is not None:
            try:
                await maybe_await(self._on_position_sync(self._last_position))
            except Exception:
                logger.warning(
                    "Final position sync failed at %.1fs", self._last_position, exc_info=True
                )
        if token.cancelled:
            return

        try:
            await self._cast_client.pause()
        except Exception as err:
            self._report_error(err)
        if token.cancelled:
            return

        final_position = self._last_position
        self._cleanup()
        logger.info("Sleep timer complete at %.1fs", final_position)
        if self._on_complete is not None:
            self._on_complete(final_position)
