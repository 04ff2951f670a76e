"""Final-result polling with backoff, host finish reinforcement and degraded mode."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
import logging

from pydantic import ValidationError

from party_sync.api.game_api import ApiResponse, GameApiClient
from party_sync.api.payloads import FinalResultsPayload, SessionPayload, parse_score_rows
from party_sync.core.clock import SystemClock
from party_sync.core.errors import PartySyncError, ResultsAccessError
from party_sync.core.models import FinalStandings, GameType, PollSchedule, ScoreEntry
from party_sync.core.ranking import rank_entries, synthesize_standings
from party_sync.core.response_time_cache import ResponseTimeCache
from party_sync.core.sync_config import SyncConfig

logger = logging.getLogger(__name__)

AGGREGATION_FAILED_STATUS = 422
_FATAL_STATUSES = (401, 403)
_FINISHED_SESSION_STATUSES = ("FINISHED", "COMPLETED")

STATUS_MESSAGES = {
    "FINISHED": "The session has ended. The server is confirming the final scores...",
    "COMPLETED": "The session has ended. The server is confirming the final scores...",
    "IN_PROGRESS": "The game is still in progress. Results are being tallied...",
}
DEFAULT_STATUS_MESSAGE = "The server is tallying the results..."


class ResultAggregator:
    """Polls for final standings until the server delivers them or degraded mode kicks in.

    Each tick asks for the final results, then refreshes the partial
    leaderboard, occasionally checks the session status and, for the host,
    nudges the server to finish the session. The delay between ticks grows
    from ``backoff_floor_ms`` by ``backoff_factor`` up to ``backoff_cap_ms``.
    """

    def __init__(
        self,
        api: GameApiClient,
        session_id: str,
        game_type: GameType,
        clock: SystemClock | None = None,
        config: SyncConfig | None = None,
        is_host: bool = False,
        response_cache: ResponseTimeCache | None = None,
        participants: Iterable[str] = (),
        on_partial: Callable[[tuple[ScoreEntry, ...]], None] | None = None,
        on_status: Callable[[str], None] | None = None,
        on_final: Callable[[FinalStandings], None] | None = None,
    ) -> None:
        self._api = api
        self._session_id = session_id
        self._game_type = game_type
        self._clock = clock or SystemClock()
        self._config = config or SyncConfig()
        self._is_host = is_host
        self._response_cache = response_cache
        self._participants = tuple(participants)
        self._on_partial = on_partial
        self._on_status = on_status
        self._on_final = on_final

        self._schedule = PollSchedule(
            floor_ms=self._config.backoff_floor_ms,
            cap_ms=self._config.backoff_cap_ms,
            factor=self._config.backoff_factor,
        )
        self._generation = 0
        self._task: asyncio.Task[FinalStandings] | None = None
        self._background: set[asyncio.Task[str]] = set()
        self._raw_partial: tuple[ScoreEntry, ...] = ()
        self._scores_seen = False
        self._leaderboard: tuple[ScoreEntry, ...] = ()

    @property
    def schedule(self) -> PollSchedule:
        return self._schedule

    @property
    def leaderboard(self) -> tuple[ScoreEntry, ...]:
        return self._leaderboard

    def start(self) -> asyncio.Task[FinalStandings]:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(
            self.run(), name=f"result-aggregator-{self._session_id}"
        )
        return self._task

    def cancel(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        for background in list(self._background):
            background.cancel()

    async def run(self) -> FinalStandings:
        """Loop until final standings are available.

        Raises ``ResultsAccessError`` on 401/403 and ``asyncio.CancelledError``
        once cancelled.
        """
        generation = self._generation
        self._schedule.reset(self._clock.now_ms())
        logger.info("Waiting for final results of session %s (host=%s)", self._session_id, self._is_host)

        while True:
            self._schedule.attempt += 1
            response = await self._fetch(self._api.fetch_results)
            self._ensure_current(generation)
            status = response.status if response is not None else None

            if status == 200 and response.body:
                standings = self._parse_final(response.body)
                if standings is not None:
                    logger.info("Final results ready after %d attempts", self._schedule.attempt)
                    return self._complete(standings)
            if status in _FATAL_STATUSES:
                raise ResultsAccessError(f"Results refused with HTTP {status}", status)

            elapsed_ms = self._clock.now_ms() - self._schedule.started_at_ms
            if status == AGGREGATION_FAILED_STATUS and elapsed_ms > self._config.degraded_mode_timeout_ms:
                standings = await self._degraded_standings()
                self._ensure_current(generation)
                if standings is not None:
                    logger.warning(
                        "Degraded mode after %.0f ms: final standings synthesized from partial scores",
                        elapsed_ms,
                    )
                    return self._complete(standings)

            logger.debug("Results not ready (status %s, elapsed %.0f ms)", status, elapsed_ms)
            await self._refresh_partial()
            self._ensure_current(generation)

            if self._on_status is not None and self._schedule.attempt % self._config.status_check_every_ticks == 0:
                await self._publish_session_status()
                self._ensure_current(generation)

            now = self._clock.now_ms()
            if self._is_host and self._schedule.reinforce_due(now, self._config.reinforce_interval_ms):
                self._schedule.last_reinforce_at_ms = now
                self._spawn(self.reinforce_finish())

            await self._clock.sleep(self._schedule.delay_ms)
            self._ensure_current(generation)
            self._schedule.advance()

    async def reinforce_finish(self) -> str:
        """Ask the server to finish the session unless it already has. Never raises."""
        session = await self._fetch(self._api.fetch_session)
        if session is not None and _session_status(session) in _FINISHED_SESSION_STATUSES:
            return "DONE"
        response = await self._fetch(self._api.finish_session)
        if response is None:
            return "FAILED"
        logger.info("Finish reinforcement for session %s -> HTTP %d", self._session_id, response.status)
        return "REQUESTED"

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise asyncio.CancelledError()

    def _complete(self, standings: FinalStandings) -> FinalStandings:
        if self._on_final is not None:
            self._on_final(standings)
        return standings

    async def _fetch(self, call: Callable[[str], Awaitable[ApiResponse]]) -> ApiResponse | None:
        try:
            return await call(self._session_id)
        except PartySyncError as exc:
            logger.debug("Request for session %s failed: %s", self._session_id, exc)
            return None
        except Exception:
            logger.exception("Request for session %s failed unexpectedly", self._session_id)
            return None

    def _parse_final(self, body: object) -> FinalStandings | None:
        try:
            payload = FinalResultsPayload.model_validate(body)
        except ValidationError:
            logger.warning("Final results payload not understood; still polling")
            return None
        return payload.to_standings(self._session_id, self._game_type, self._clock.now_ms())

    async def _refresh_partial(self) -> bool:
        response = await self._fetch(self._api.fetch_scores)
        if response is None or response.status != 200:
            return False
        if isinstance(response.body, list):
            self._scores_seen = True
        entries = tuple(parse_score_rows(response.body))
        if not entries:
            return False
        self._raw_partial = entries
        ranked = tuple(rank_entries(entries, self._game_type))
        if ranked != self._leaderboard:
            self._leaderboard = ranked
            if self._on_partial is not None:
                self._on_partial(ranked)
        return True

    async def _degraded_standings(self) -> FinalStandings | None:
        await self._refresh_partial()
        best_times = self._response_cache.best_times() if self._response_cache is not None else {}
        participants = self._participants or await self._fetch_participants()
        if not (self._scores_seen or best_times or participants):
            logger.warning("Degraded mode wanted but the server has not shared any scores yet")
            return None
        return synthesize_standings(
            self._session_id,
            self._raw_partial,
            self._game_type,
            best_times=best_times,
            participants=participants,
            produced_at_ms=self._clock.now_ms(),
        )

    async def _fetch_participants(self) -> tuple[str, ...]:
        response = await self._fetch(self._api.fetch_session)
        if response is None or response.status != 200 or not isinstance(response.body, dict):
            return ()
        try:
            return tuple(SessionPayload.model_validate(response.body).participant_uids())
        except ValidationError:
            return ()

    async def _publish_session_status(self) -> None:
        response = await self._fetch(self._api.fetch_session)
        if response is None or response.status != 200:
            return
        status = _session_status(response)
        self._on_status(STATUS_MESSAGES.get(status or "", DEFAULT_STATUS_MESSAGE))

    def _spawn(self, coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _session_status(response: ApiResponse) -> str | None:
    if response.status != 200 or not isinstance(response.body, dict):
        return None
    try:
        status = SessionPayload.model_validate(response.body).status
    except ValidationError:
        return None
    return status.upper() if status else None
