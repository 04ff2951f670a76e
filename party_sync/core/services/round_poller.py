"""Single-flight polling loop over the current-round endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging

from party_sync.api.game_api import GameApiClient
from party_sync.core.clock import SystemClock
from party_sync.core.errors import GameApiTransportError
from party_sync.core.models import Round
from party_sync.core.round_classifier import (
    ActiveRound,
    Finished,
    RoundPollResult,
    Transient,
    WaitingNext,
    classify_round_response,
)
from party_sync.core.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class RoundPoller:
    """Fetches the current round, classifies it and schedules the next fetch.

    The next poll is only scheduled once the previous one settled, and a lock
    keeps a single request outstanding even when the loop is restarted while a
    request is in flight. ``stop`` invalidates the loop through a generation
    counter and cancels its task.
    """

    def __init__(
        self,
        api: GameApiClient,
        session_id: str,
        clock: SystemClock | None = None,
        config: SyncConfig | None = None,
        on_round: Callable[[Round], None] | None = None,
        on_waiting: Callable[[], None] | None = None,
        on_finished: Callable[[], None] | None = None,
        on_connection_trouble: Callable[[int], None] | None = None,
    ) -> None:
        self._api = api
        self._session_id = session_id
        self._clock = clock or SystemClock()
        self._config = config or SyncConfig()
        self._on_round = on_round
        self._on_waiting = on_waiting
        self._on_finished = on_finished
        self._on_connection_trouble = on_connection_trouble

        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._single_flight = asyncio.Lock()
        self._running = False
        self._next_delay_ms: float | None = None
        self._consecutive_failures = 0
        self._last_result: RoundPollResult | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_delay_ms(self) -> float | None:
        """Delay the loop is currently waiting out, ``None`` when stopped."""
        return self._next_delay_ms

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_result(self) -> RoundPollResult | None:
        return self._last_result

    def start(self, initial_delay_ms: float = 0) -> None:
        """Start (or restart) the loop; any pending scheduled poll is discarded."""
        self._invalidate()
        self._running = True
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, initial_delay_ms), name=f"round-poller-{generation}"
        )

    def poll_now(self) -> None:
        """Advance immediately: skip the pending delay and fetch right away."""
        logger.debug("Round poll requested immediately")
        self.start(0)

    def resume(self) -> None:
        """Start the loop at the active cadence unless it is already running."""
        if not self._running:
            self.start(self._config.active_poll_ms)

    def stop(self) -> None:
        self._invalidate()
        self._running = False
        self._next_delay_ms = None

    def _invalidate(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, generation: int, delay_ms: float) -> None:
        while generation == self._generation:
            if delay_ms > 0:
                self._next_delay_ms = delay_ms
                await self._clock.sleep(delay_ms)
                if generation != self._generation:
                    return
            self._next_delay_ms = None

            result = await self._fetch()
            if generation != self._generation:
                return
            try:
                next_delay = self._dispatch(result)
            except Exception:
                logger.exception("Handling round poll result %r failed", result)
                next_delay = self._config.error_poll_ms
            if next_delay is None:
                if generation == self._generation:
                    self._running = False
                return
            delay_ms = next_delay

    async def _fetch(self) -> RoundPollResult:
        async with self._single_flight:
            try:
                response = await self._api.fetch_current_round(self._session_id)
            except GameApiTransportError as exc:
                return Transient(None, str(exc))
            except Exception:
                logger.exception("Round poll for session %s failed unexpectedly", self._session_id)
                return Transient(None, "unexpected error")
        try:
            return classify_round_response(response)
        except Exception:
            logger.exception("Round response classification failed")
            return Transient(response.status, "classification error")

    def _dispatch(self, result: RoundPollResult) -> float | None:
        """Hand ``result`` to the owner and return the next delay, or ``None`` to stop."""
        self._last_result = result
        if isinstance(result, Transient):
            return self._record_failure(result)

        self._consecutive_failures = 0
        if isinstance(result, ActiveRound):
            if self._on_round is not None:
                self._on_round(result.round)
            return self._config.active_poll_ms
        if isinstance(result, WaitingNext):
            if self._on_waiting is not None:
                self._on_waiting()
            return self._config.transition_poll_ms
        if isinstance(result, Finished):
            logger.info("Round sequence finished for session %s", self._session_id)
            self._running = False
            if self._on_finished is not None:
                self._on_finished()
            return None
        raise TypeError(f"Unhandled round poll result: {result!r}")

    def _record_failure(self, result: Transient) -> float:
        self._consecutive_failures += 1
        logger.debug(
            "Transient round poll result %s (%s), streak %d",
            result.status,
            result.reason,
            self._consecutive_failures,
        )
        if self._consecutive_failures == self._config.max_silent_failures:
            logger.warning(
                "Round polling failed %d times in a row for session %s",
                self._consecutive_failures,
                self._session_id,
            )
            if self._on_connection_trouble is not None:
                self._on_connection_trouble(self._consecutive_failures)
        if result.status is None:
            return self._config.error_poll_ms
        return self._config.transient_poll_ms
