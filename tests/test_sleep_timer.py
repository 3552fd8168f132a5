from __future__ import annotations

import asyncio
import logging

import pytest

from aiobookcast.cast import sleep_timer
from aiobookcast.cast.sleep_timer import CastSleepTimer
from aiobookcast.models.types import PlayerState, SleepTimerPhase
from aiobookcast.proxy.fade import fade_out
from aiobookcast.proxy.gain import GainStage


@pytest.fixture
def fade_calls(monkeypatch) -> list[dict]:
    calls: list[dict] = []

    async def _recording_fade_out(stage, duration_ms, **kwargs):
        calls.append({"duration_ms": duration_ms, **kwargs})
        return await fade_out(stage, duration_ms, **kwargs)

    monkeypatch.setattr(sleep_timer, "fade_out", _recording_fade_out)
    return calls


async def _wait_for_phase(timer: CastSleepTimer, phase: SleepTimerPhase) -> None:
    async with asyncio.timeout(2.0):
        while timer.phase is not phase:
            await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_expiry_fades_pauses_and_completes(cast_client, fade_calls) -> None:
    cast_client.status.current_time = 1234.5
    stage = GainStage()
    completed: list[float] = []
    synced: list[float] = []
    timer = CastSleepTimer(
        cast_client,
        stage,
        duration_ms=60,
        fade_duration_ms=40,
        fade_steps=4,
        latency_compensation_ms=0,
        sync_interval_ms=10,
        on_position_sync=synced.append,
        on_complete=completed.append,
    )

    await asyncio.wait_for(timer.start(), 2.0)

    assert len(fade_calls) == 1
    assert fade_calls[0]["duration_ms"] == 40
    assert fade_calls[0]["steps"] == 4
    assert stage.gain == 0.0
    assert cast_client.pause_calls == 1
    assert completed == [1234.5]
    assert synced[-1] == 1234.5
    assert timer.phase is SleepTimerPhase.INACTIVE
    assert timer.remaining_ms == 0


@pytest.mark.asyncio
async def test_cancel_mid_fade_never_completes(cast_client, fade_calls) -> None:
    stage = GainStage()
    completed: list[float] = []
    timer = CastSleepTimer(
        cast_client,
        stage,
        duration_ms=10,
        fade_duration_ms=1000,
        fade_steps=10,
        latency_compensation_ms=0,
        on_complete=completed.append,
    )
    task = asyncio.create_task(timer.start())
    await _wait_for_phase(timer, SleepTimerPhase.FADING)
    await asyncio.sleep(0.15)

    timer.cancel()
    await asyncio.wait_for(task, 1.0)
    await asyncio.sleep(0.05)

    assert completed == []
    assert cast_client.pause_calls == 0
    assert not timer.active
    assert 0.0 < stage.gain < 1.0


@pytest.mark.asyncio
async def test_countdown_state_and_progress(cast_client) -> None:
    cast_client.status.current_time = 15.0
    progress: list[int] = []
    timer = CastSleepTimer(
        cast_client,
        GainStage(),
        duration_ms=10000,
        fade_duration_ms=5000,
        latency_compensation_ms=2000,
        progress_interval_ms=10,
        on_progress=progress.append,
    )
    task = asyncio.create_task(timer.start())
    await asyncio.sleep(0.05)

    state = timer.state
    assert state.active
    assert state.phase is SleepTimerPhase.COUNTDOWN
    assert 7000 < state.remaining_ms <= 8000
    assert state.position == 15.0
    assert state.total_duration_ms == 10000
    assert state.fade_duration_ms == 5000
    assert progress
    assert all(7000 < remaining <= 8000 for remaining in progress)

    with pytest.raises(RuntimeError):
        await timer.start()

    assert timer.cancel() == 15.0
    await task
    assert timer.state.phase is SleepTimerPhase.INACTIVE
    assert timer.state.remaining_ms == 0


@pytest.mark.asyncio
async def test_playback_ended_stops_timer(cast_client, fade_calls) -> None:
    cast_client.status.player_state = PlayerState.IDLE
    completed: list[float] = []
    timer = CastSleepTimer(
        cast_client, GainStage(), duration_ms=10000, on_complete=completed.append
    )

    await asyncio.wait_for(timer.start(), 1.0)

    assert not timer.active
    assert fade_calls == []
    assert cast_client.pause_calls == 0
    assert completed == []


@pytest.mark.asyncio
async def test_disconnected_client_reports_error(cast_client) -> None:
    cast_client.is_connected = False
    errors: list[tuple[Exception, float]] = []
    timer = CastSleepTimer(
        cast_client,
        GainStage(),
        duration_ms=10000,
        on_error=lambda err, position: errors.append((err, position)),
    )

    await asyncio.wait_for(timer.start(), 1.0)

    assert not timer.active
    assert len(errors) == 1
    assert isinstance(errors[0][0], ConnectionError)


@pytest.mark.asyncio
async def test_pause_failure_is_reported_and_timer_completes(cast_client) -> None:
    cast_client.fail_pause = True
    errors: list[Exception] = []
    completed: list[float] = []
    timer = CastSleepTimer(
        cast_client,
        GainStage(),
        duration_ms=10,
        fade_duration_ms=10,
        fade_steps=2,
        latency_compensation_ms=0,
        on_complete=completed.append,
        on_error=lambda err, position: errors.append(err),
    )

    await asyncio.wait_for(timer.start(), 2.0)

    assert cast_client.pause_calls == 1
    assert len(errors) == 1
    assert completed == [0.0]
    assert not timer.active


@pytest.mark.asyncio
async def test_final_sync_failure_still_pauses(cast_client) -> None:
    calls: list[float] = []

    def _sync(position: float) -> None:
        calls.append(position)
        if len(calls) > 1:
            raise ConnectionError("progress endpoint down")

    completed: list[float] = []
    timer = CastSleepTimer(
        cast_client,
        GainStage(),
        duration_ms=10,
        fade_duration_ms=10,
        fade_steps=2,
        latency_compensation_ms=0,
        sync_interval_ms=60000,
        on_position_sync=_sync,
        on_complete=completed.append,
    )

    await asyncio.wait_for(timer.start(), 2.0)

    assert len(calls) == 2
    assert cast_client.pause_calls == 1
    assert completed == [0.0]


@pytest.mark.asyncio
async def test_on_complete_error_is_logged(cast_client, caplog) -> None:
    def _complete(position: float) -> None:
        raise RuntimeError("notification failed")

    timer = CastSleepTimer(
        cast_client,
        GainStage(),
        duration_ms=10,
        fade_duration_ms=10,
        fade_steps=2,
        latency_compensation_ms=0,
        on_complete=_complete,
    )

    with caplog.at_level(logging.ERROR, logger="aiobookcast.cast.sleep_timer"):
        await asyncio.wait_for(timer.start(), 2.0)
        await asyncio.sleep(0.01)

    assert cast_client.pause_calls == 1
    assert not timer.active
    assert any(
        record.exc_info is not None and isinstance(record.exc_info[1], RuntimeError)
        for record in caplog.records
    )


@pytest.mark.asyncio
async def test_latency_larger_than_duration_fires_immediately(cast_client, fade_calls) -> None:
    timer = CastSleepTimer(
        cast_client,
        GainStage(),
        duration_ms=100,
        fade_duration_ms=0,
        fade_steps=1,
        latency_compensation_ms=2000,
    )
    task = asyncio.create_task(timer.start())
    await asyncio.sleep(0.02)
    assert timer.remaining_ms == 0

    await asyncio.wait_for(task, 1.0)
    assert len(fade_calls) == 1
    assert cast_client.pause_calls == 1


@pytest.mark.asyncio
async def test_cancelling_start_cancels_timer(cast_client) -> None:
    timer = CastSleepTimer(cast_client, GainStage(), duration_ms=10000)
    task = asyncio.create_task(timer.start())
    await asyncio.sleep(0.02)
    assert timer.active

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not timer.active


def test_invalid_arguments(cast_client) -> None:
    with pytest.raises(ValueError):
        CastSleepTimer(cast_client, GainStage(), duration_ms=-1)
    with pytest.raises(ValueError):
        CastSleepTimer(cast_client, GainStage(), duration_ms=1000, fade_steps=0)
