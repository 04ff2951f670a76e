"""Facade wiring every synchronization component for one session lifetime."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
import logging

from party_sync.api.game_api import GameApiClient
from party_sync.core.clock import SystemClock
from party_sync.core.clock_skew import ClockSkewCorrector
from party_sync.core.errors import PartySyncError, SessionFatalError
from party_sync.core.models import (
    EngineSnapshot,
    EngineStage,
    FinalStandings,
    GameType,
    Notice,
    NoticeLevel,
    Round,
    ScoreEntry,
)
from party_sync.core.response_time_cache import ResponseTimeCache
from party_sync.core.services.countdown_timer import CountdownTimer
from party_sync.core.services.result_aggregator import ResultAggregator
from party_sync.core.services.round_poller import RoundPoller
from party_sync.core.services.scoreboard_poller import ScoreboardPoller
from party_sync.core.services.submission_coordinator import (
    SubmissionCoordinator,
    SubmissionOutcome,
    SubmissionResult,
)
from party_sync.core.sync_config import SyncConfig

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[EngineSnapshot], None]

_TIME_UP = Notice(NoticeLevel.WARNING, "TIME_UP", "Time is up! This round counts as no answer.")
_CONNECTION_TROUBLE = Notice(
    NoticeLevel.WARNING, "CONNECTION_TROUBLE", "Having trouble reaching the game server. Still trying..."
)
_DEGRADED = Notice(
    NoticeLevel.WARNING,
    "DEGRADED_RESULTS",
    "Final results were generated from partial scores because the server could not tally them.",
)


class RoundSyncEngine:
    """Runs one player's view of a game session from first round to final standings.

    The engine owns the skew corrector, countdown, round poller, submission
    coordinator, live scoreboard and result aggregator. Collaborators observe
    it through :meth:`subscribe` and drive it with :meth:`submit`. All
    callbacks check ``_alive`` first so nothing mutates state once the engine
    reached a terminal stage or was stopped.
    """

    def __init__(
        self,
        api: GameApiClient,
        session_id: str,
        user_uid: str,
        game_type: GameType = GameType.QUIZ,
        *,
        is_host: bool = False,
        config: SyncConfig | None = None,
        clock: SystemClock | None = None,
        response_cache: ResponseTimeCache | None = None,
        participants: Iterable[str] = (),
    ) -> None:
        self._session_id = session_id
        self._user_uid = user_uid
        self._game_type = game_type
        self._config = config or SyncConfig()
        self._clock = clock or SystemClock()

        self._skew = ClockSkewCorrector(self._clock, nominal_round_ms=self._config.nominal_round_ms)
        self._timer = CountdownTimer(
            self._skew, self._clock, self._config, on_tick=self._handle_tick, on_expire=self._handle_expire
        )
        self._poller = RoundPoller(
            api,
            session_id,
            self._clock,
            self._config,
            on_round=self._handle_round,
            on_waiting=self._handle_waiting,
            on_finished=self._handle_finished,
            on_connection_trouble=self._handle_connection_trouble,
        )
        self._coordinator = SubmissionCoordinator(
            api,
            session_id,
            user_uid,
            self._poller,
            self._skew,
            self._clock,
            self._config,
            response_cache,
            on_change=self._publish,
            on_fatal=self._abort,
        )
        self._scoreboard = ScoreboardPoller(
            api, session_id, game_type, self._clock, self._config, on_change=self._handle_scoreboard
        )
        self._aggregator = ResultAggregator(
            api,
            session_id,
            game_type,
            self._clock,
            self._config,
            is_host=is_host,
            response_cache=response_cache,
            participants=participants,
            on_partial=self._handle_scoreboard,
            on_status=self._handle_status,
        )

        self._alive = False
        self._stage = EngineStage.NO_ROUND
        self._applied_round_id: str | None = None
        self._scoreboard_entries: tuple[ScoreEntry, ...] = ()
        self._standings: FinalStandings | None = None
        self._status_message: str | None = None
        self._notice: Notice | None = None
        self._listeners: list[SnapshotListener] = []
        self._done: asyncio.Future[FinalStandings] | None = None
        self._aggregation_task: asyncio.Task[FinalStandings] | None = None

    @property
    def stage(self) -> EngineStage:
        return self._stage

    @property
    def is_alive(self) -> bool:
        return self._alive

    @property
    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            stage=self._stage,
            round=self._coordinator.current_round,
            remaining_seconds=self._timer.remaining_seconds if self._stage is EngineStage.ACTIVE else None,
            submission=self._coordinator.state,
            waiting_info=self._coordinator.waiting_info,
            scoreboard=self._scoreboard_entries,
            standings=self._standings,
            status_message=self._status_message,
            notice=self._notice,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for snapshots; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> None:
        if self._alive or self._stage.is_terminal:
            raise RuntimeError("RoundSyncEngine can only be started once.")
        logger.info("Joining session %s as %s (%s)", self._session_id, self._user_uid, self._game_type.value)
        self._alive = True
        self._done = asyncio.get_running_loop().create_future()
        self._poller.start(0)
        self._scoreboard.start()
        self._publish()

    def stop(self) -> None:
        """Cancel every timer and loop; pending :meth:`wait_until_done` calls are cancelled."""
        if not self._alive:
            return
        logger.info("Stopping engine for session %s in stage %s", self._session_id, self._stage.value)
        self._alive = False
        self._halt()
        if self._done is not None and not self._done.done():
            self._done.cancel()

    async def wait_until_done(self) -> FinalStandings:
        """Resolve with the final standings, or raise the error that aborted the session."""
        if self._done is None:
            raise RuntimeError("RoundSyncEngine was never started.")
        return await asyncio.shield(self._done)

    async def submit(self, option_id: str) -> SubmissionResult:
        if not self._alive:
            return SubmissionResult(SubmissionOutcome.REJECTED_NO_ROUND)
        result = await self._coordinator.submit(option_id)
        if self._alive and result.notice is not None:
            self._notice = result.notice
            self._publish()
        return result

    def _handle_round(self, round_: Round) -> None:
        if not self._alive or round_.id == self._applied_round_id:
            return
        deadline_ms = self._skew.apply_round_timing(round_.server_time_ms, round_.expires_at_ms)
        self._applied_round_id = round_.id
        self._coordinator.begin_round(round_)
        self._stage = EngineStage.ACTIVE
        self._notice = None
        logger.info("Round %s (no. %s) is active", round_.id, round_.round_no)
        self._timer.start(deadline_ms)
        self._publish()

    def _handle_waiting(self) -> None:
        if not self._alive or self._stage not in (EngineStage.NO_ROUND, EngineStage.ACTIVE):
            return
        self._timer.cancel()
        self._coordinator.close_round()
        self._stage = EngineStage.WAITING_NEXT
        logger.info("Waiting for the next round of session %s", self._session_id)
        self._publish()

    def _handle_finished(self) -> None:
        if not self._alive or self._stage in (EngineStage.FINISHED, EngineStage.AGGREGATING):
            return
        self._timer.cancel()
        self._coordinator.close_round()
        self._scoreboard.stop()
        self._stage = EngineStage.FINISHED
        self._publish()

        self._stage = EngineStage.AGGREGATING
        self._aggregation_task = self._aggregator.start()
        self._aggregation_task.add_done_callback(self._handle_aggregation_done)
        self._publish()

    def _handle_aggregation_done(self, task: asyncio.Task[FinalStandings]) -> None:
        if task.cancelled() or not self._alive:
            return
        error = task.exception()
        if isinstance(error, SessionFatalError):
            self._abort(error)
        elif error is not None:
            logger.error("Result aggregation crashed", exc_info=error)
            self._abort(PartySyncError(f"Result aggregation failed: {error}"))
        else:
            self._complete(task.result())

    def _handle_expire(self) -> None:
        if not self._alive:
            return
        if self._coordinator.mark_timed_out():
            logger.info("Round timed out without an answer from %s", self._user_uid)
            self._notice = _TIME_UP
            self._publish()
        self._poller.poll_now()

    def _handle_tick(self, remaining_seconds: int) -> None:
        if self._alive:
            self._publish()

    def _handle_connection_trouble(self, failures: int) -> None:
        if not self._alive:
            return
        self._notice = _CONNECTION_TROUBLE
        self._publish()

    def _handle_scoreboard(self, entries: tuple[ScoreEntry, ...]) -> None:
        if not self._alive:
            return
        self._scoreboard_entries = entries
        self._publish()

    def _handle_status(self, message: str) -> None:
        if not self._alive or message == self._status_message:
            return
        self._status_message = message
        self._publish()

    def _complete(self, standings: FinalStandings) -> None:
        self._standings = standings
        self._stage = EngineStage.DEGRADED_DONE if standings.degraded else EngineStage.DONE
        if standings.degraded:
            self._notice = _DEGRADED
        logger.info("Session %s finished with stage %s", self._session_id, self._stage.value)
        self._finish()
        if self._done is not None and not self._done.done():
            self._done.set_result(standings)

    def _abort(self, error: SessionFatalError | PartySyncError) -> None:
        if not self._alive:
            return
        logger.error("Session %s aborted: %s", self._session_id, error)
        self._stage = EngineStage.ABORTED
        self._notice = Notice(NoticeLevel.ERROR, "SESSION_FATAL", str(error))
        self._finish()
        if self._done is not None and not self._done.done():
            self._done.set_exception(error)

    def _finish(self) -> None:
        self._halt()
        self._publish()
        self._alive = False

    def _halt(self) -> None:
        self._poller.stop()
        self._timer.cancel()
        self._scoreboard.stop()
        self._aggregator.cancel()

    def _publish(self) -> None:
        if not self._alive:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)
