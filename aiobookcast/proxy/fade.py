"""
Stepped gain fades with cooperative cancellation.

Fades drive a GainStage through a fixed number of discrete gain updates spread
evenly over a duration. Because the gain is applied to the PCM stream itself,
the playback device never receives a volume command and so never plays its
volume-change sound.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .gain import clamp_gain

if TYPE_CHECKING:
    from .gain import GainStage

logger = logging.getLogger(__name__)

DEFAULT_FADE_STEPS = 30

# Callback invoked with (gain, step_index, total_steps) after each gain update.
StepCallback = Callable[[float, int, int], None]


class CancelToken:
    """One-shot cancellation signal shared between cooperating tasks."""

    def __init__(self) -> None:
        """Initialize an uncancelled token."""
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Return True once cancel() has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Calling it again has no effect."""
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep for up to the given time, waking early on cancellation.

        Returns:
            True if the token was cancelled before or during the sleep.
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0.0))
        except TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class Fade:
    """A fade from one gain to another in a number of discrete steps."""

    from_gain: float
    to_gain: float
    duration_ms: float
    steps: int = DEFAULT_FADE_STEPS

    def __post_init__(self) -> None:
        """Validate field values."""
        if self.steps <= 0:
            raise ValueError(f"steps must be positive, got {self.steps}")
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must not be negative, got {self.duration_ms}")

    @property
    def step_interval(self) -> float:
        """Seconds to wait between two steps."""
        return self.duration_ms / self.steps / 1000

    def step_gain(self, index: int) -> float:
        """Gain for step index (1-based) of this fade."""
        return clamp_gain(self.from_gain - (self.from_gain - self.to_gain) * index / self.steps)


@dataclass(frozen=True)
class FadeResult:
    """Outcome of a fade."""

    completed: bool
    """True if every step ran and the target gain was reached."""
    final_gain: float
    """Gain the stage was left at."""
    steps_executed: int
    cancelled: bool
    """True if the fade stopped early because its token was cancelled."""


async def run_fade(
    stage: GainStage,
    fade: Fade,
    *,
    cancel_token: CancelToken | None = None,
    on_step: StepCallback | None = None,
) -> FadeResult:
    """
    Run a fade against a gain stage.

    The stage is set to the start gain right away. Each step sets its gain
    before waiting, so the first audible change happens immediately. If the
    token is cancelled the fade stops where it is, leaving the last gain in
    place. A completed fade always ends exactly on the target gain.
    """
    current = clamp_gain(fade.from_gain)
    steps_executed = 0
    stage.set_gain(current)

    def _cancelled() -> FadeResult:
        logger.debug(
            "Fade cancelled after %d/%d steps at gain %.3f", steps_executed, fade.steps, current
        )
        return FadeResult(
            completed=False,
            final_gain=current,
            steps_executed=steps_executed,
            cancelled=True,
        )

    for index in range(1, fade.steps + 1):
        if cancel_token is not None and cancel_token.cancelled:
            return _cancelled()

        current = fade.step_gain(index)
        stage.set_gain(current)
        steps_executed = index
        if on_step is not None:
            on_step(current, index, fade.steps)

        if index < fade.steps:
            if cancel_token is not None:
                if await cancel_token.sleep(fade.step_interval):
                    return _cancelled()
            else:
                await asyncio.sleep(fade.step_interval)

    stage.set_gain(fade.to_gain)
    return FadeResult(
        completed=True,
        final_gain=stage.gain,
        steps_executed=fade.steps,
        cancelled=False,
    )


async def fade_volume(
    stage: GainStage,
    from_gain: float,
    to_gain: float,
    duration_ms: float,
    *,
    steps: int = DEFAULT_FADE_STEPS,
    cancel_token: CancelToken | None = None,
    on_step: StepCallback | None = None,
) -> FadeResult:
    """
    Fade a gain stage from one gain to another over duration_ms.

    Args:
        stage: The gain stage to drive.
        from_gain: Starting gain (0.0 - 1.5).
        to_gain: Target gain (0.0 - 1.5).
        duration_ms: Total fade duration in milliseconds.
        steps: Number of discrete gain updates (default: 30).
        cancel_token: Optional token to stop the fade early.
        on_step: Optional progress callback (gain, step, total_steps).
    """
    fade = Fade(from_gain=from_gain, to_gain=to_gain, duration_ms=duration_ms, steps=steps)
    return await run_fade(stage, fade, cancel_token=cancel_token, on_step=on_step)


async def fade_out(
    stage: GainStage,
    duration_ms: float,
    *,
    steps: int = DEFAULT_FADE_STEPS,
    cancel_token: CancelToken | None = None,
    on_step: StepCallback | None = None,
) -> FadeResult:
    """Fade from the stage's current gain to silence."""
    return await fade_volume(
        stage, stage.gain, 0.0, duration_ms, steps=steps, cancel_token=cancel_token, on_step=on_step
    )


async def fade_in(
    stage: GainStage,
    target_gain: float,
    duration_ms: float,
    *,
    steps: int = DEFAULT_FADE_STEPS,
    cancel_token: CancelToken | None = None,
    on_step: StepCallback | None = None,
) -> FadeResult:
    """Fade from silence to target_gain."""
    return await fade_volume(
        stage,
        0.0,
        target_gain,
        duration_ms,
        steps=steps,
        cancel_token=cancel_token,
        on_step=on_step,
    )
