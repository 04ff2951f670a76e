"""Skew-corrected countdown for the active round."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
import logging
import math

from party_sync.core.clock import SystemClock
from party_sync.core.clock_skew import ClockSkewCorrector
from party_sync.core.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class TimerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    EXPIRED = "EXPIRED"


class CountdownTimer:
    """Ticks whole remaining seconds towards a server-clock deadline.

    Each ``start``/``cancel`` bumps a generation counter; a tick whose
    generation is stale returns without touching state, so a wake-up that
    was already queued when the timer was cancelled is harmless.
    """

    def __init__(
        self,
        skew: ClockSkewCorrector,
        clock: SystemClock | None = None,
        config: SyncConfig | None = None,
        on_tick: Callable[[int], None] | None = None,
        on_expire: Callable[[], None] | None = None,
    ) -> None:
        self._skew = skew
        self._clock = clock or SystemClock()
        self._config = config or SyncConfig()
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._state = TimerState.IDLE
        self._generation = 0
        self._deadline_ms: float | None = None
        self._remaining_seconds: int | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def remaining_seconds(self) -> int | None:
        return self._remaining_seconds

    def compute_remaining_seconds(self) -> int:
        if self._deadline_ms is None:
            return 0
        remaining_ms = self._deadline_ms - self._skew.server_now_ms()
        seconds = math.floor(remaining_ms / 1000)
        return max(0, min(self._config.nominal_round_seconds, seconds))

    def start(self, deadline_ms: float) -> None:
        """(Re)start counting down to ``deadline_ms`` on the server clock."""
        self.cancel()
        self._deadline_ms = deadline_ms
        self._state = TimerState.RUNNING
        generation = self._generation
        self._publish(self.compute_remaining_seconds())
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation), name=f"countdown-{generation}"
        )

    def cancel(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._state = TimerState.IDLE

    async def _run(self, generation: int) -> None:
        while generation == self._generation and self._state is TimerState.RUNNING:
            await self._clock.sleep(self._config.tick_interval_ms)
            if generation != self._generation:
                return
            self._tick(generation)

    def _tick(self, generation: int) -> None:
        if generation != self._generation or self._state is not TimerState.RUNNING:
            return
        remaining = self.compute_remaining_seconds()
        self._publish(remaining)
        if remaining <= 0:
            self._state = TimerState.EXPIRED
            logger.info("Round countdown expired")
            if self._on_expire is not None:
                self._on_expire()

    def _publish(self, remaining: int) -> None:
        self._remaining_seconds = remaining
        if self._on_tick is not None:
            self._on_tick(remaining)
