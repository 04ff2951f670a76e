"""Tests for the skew-corrected countdown timer."""

import pytest

from party_sync.core.services.countdown_timer import CountdownTimer, TimerState

from conftest import START_MS


def make_timer(skew, clock, config):
    ticks, expirations = [], []
    timer = CountdownTimer(
        skew, clock, config, on_tick=ticks.append, on_expire=lambda: expirations.append(clock.now_ms())
    )
    return timer, ticks, expirations


@pytest.mark.asyncio
async def test_counts_down_and_expires_once(skew, clock, config):
    timer, ticks, expirations = make_timer(skew, clock, config)

    timer.start(skew.apply_round_timing(START_MS, START_MS + 2_000))
    assert timer.state is TimerState.RUNNING
    assert ticks == [2]

    await clock.advance(5_000)

    assert ticks == [2, 1, 1, 0]
    assert expirations == [START_MS + 1_500]
    assert timer.state is TimerState.EXPIRED
    assert timer.remaining_seconds == 0


@pytest.mark.asyncio
async def test_ticks_every_half_second(skew, clock, config):
    timer, ticks, _ = make_timer(skew, clock, config)
    timer.start(skew.apply_round_timing(START_MS, START_MS + 10_000))

    await clock.advance(2_000)

    assert ticks == [10, 9, 9, 8, 8]
    assert set(clock.sleeps) == {500}
    timer.cancel()


@pytest.mark.asyncio
async def test_remaining_is_clamped_to_round_length(skew, clock, config):
    timer, ticks, _ = make_timer(skew, clock, config)

    timer.start(START_MS + 90_000)

    assert ticks == [30]
    assert timer.compute_remaining_seconds() == 30
    timer.cancel()


@pytest.mark.asyncio
async def test_past_deadline_expires_on_first_tick(skew, clock, config):
    timer, ticks, expirations = make_timer(skew, clock, config)

    timer.start(START_MS - 3_000)
    assert ticks == [0]
    assert expirations == []

    await clock.advance(500)

    assert len(expirations) == 1
    assert timer.state is TimerState.EXPIRED


@pytest.mark.asyncio
async def test_cancel_stops_ticking(skew, clock, config):
    timer, ticks, expirations = make_timer(skew, clock, config)
    timer.start(skew.apply_round_timing(START_MS, START_MS + 2_000))
    await clock.advance(500)

    timer.cancel()
    await clock.advance(5_000)

    assert ticks == [2, 1]
    assert expirations == []
    assert timer.state is TimerState.IDLE


@pytest.mark.asyncio
async def test_queued_tick_from_cancelled_run_is_ignored(skew, clock, config):
    timer, ticks, expirations = make_timer(skew, clock, config)
    timer.start(START_MS + 300)
    stale_generation = timer.generation

    timer.cancel()
    timer._tick(stale_generation)

    assert ticks == [0]
    assert expirations == []
    assert timer.state is TimerState.IDLE


@pytest.mark.asyncio
async def test_restart_replaces_previous_countdown(skew, clock, config):
    timer, ticks, expirations = make_timer(skew, clock, config)
    timer.start(skew.apply_round_timing(START_MS, START_MS + 1_200))

    timer.start(skew.apply_round_timing(START_MS, START_MS + 20_000))
    await clock.advance(2_000)

    assert ticks == [1, 20, 19, 19, 18, 18]
    assert expirations == []
    assert clock.pending_sleepers == 1
    timer.cancel()
