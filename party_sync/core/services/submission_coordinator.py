"""Exactly-once answer submission for the active round."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging

from pydantic import ValidationError

from party_sync.api.game_api import ApiResponse, GameApiClient
from party_sync.api.payloads import AnswerReceipt
from party_sync.constants.timing_constants import FALLBACK_RESPONSE_TIME_MS
from party_sync.core.clock import SystemClock
from party_sync.core.clock_skew import ClockSkewCorrector
from party_sync.core.errors import GameApiTransportError, SessionFatalError
from party_sync.core.models import Notice, NoticeLevel, Round, SubmissionState, WaitingInfo
from party_sync.core.response_time_cache import ResponseTimeCache
from party_sync.core.services.round_poller import RoundPoller
from party_sync.core.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class SubmissionOutcome(str, Enum):
    REJECTED_IN_FLIGHT = "REJECTED_IN_FLIGHT"
    REJECTED_ALREADY_SUBMITTED = "REJECTED_ALREADY_SUBMITTED"
    REJECTED_NO_ROUND = "REJECTED_NO_ROUND"
    REJECTED_TOO_LATE = "REJECTED_TOO_LATE"
    ACCEPTED = "ACCEPTED"
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    ALL_SUBMITTED = "ALL_SUBMITTED"
    ROUND_CLOSED = "ROUND_CLOSED"
    INVALID_OPTION = "INVALID_OPTION"
    SESSION_FATAL = "SESSION_FATAL"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    STALE_ROUND = "STALE_ROUND"

    @property
    def is_rejection(self) -> bool:
        return self.value.startswith("REJECTED_")


@dataclass(slots=True, frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    status: int | None = None
    correct: bool | None = None
    waiting_info: WaitingInfo | None = None
    notice: Notice | None = None


_TOO_LATE = Notice(NoticeLevel.ERROR, "TOO_LATE", "Time is up for this round.")
_ALREADY = Notice(NoticeLevel.INFO, "ALREADY_SUBMITTED", "You have already answered this round.")
_INVALID = Notice(NoticeLevel.WARNING, "INVALID_OPTION", "That option is no longer valid; the round was refreshed.")
_FATAL = Notice(NoticeLevel.ERROR, "SESSION_FATAL", "The session is no longer available.")
_SERVER_ERROR = Notice(NoticeLevel.ERROR, "SUBMIT_FAILED", "Server error while sending your answer. Please try again.")
_NETWORK_ERROR = Notice(NoticeLevel.ERROR, "SUBMIT_FAILED", "Network error while sending your answer. Please try again.")
_UNEXPECTED = Notice(NoticeLevel.ERROR, "SUBMIT_FAILED", "Unexpected response while sending your answer.")


class SubmissionCoordinator:
    """Serializes answer submission for one round and interprets the server's verdict.

    Preconditions are checked before the first suspension point so concurrent
    calls cannot both pass them. The outcome also steers the round poller:
    an immediate poll when the round is over for everyone, normal cadence
    otherwise, and a full stop when the session is gone.
    """

    def __init__(
        self,
        api: GameApiClient,
        session_id: str,
        user_uid: str,
        poller: RoundPoller,
        skew: ClockSkewCorrector,
        clock: SystemClock | None = None,
        config: SyncConfig | None = None,
        response_cache: ResponseTimeCache | None = None,
        on_change: Callable[[], None] | None = None,
        on_fatal: Callable[[SessionFatalError], None] | None = None,
    ) -> None:
        self._api = api
        self._session_id = session_id
        self._user_uid = user_uid
        self._poller = poller
        self._skew = skew
        self._clock = clock or SystemClock()
        self._config = config or SyncConfig()
        self._response_cache = response_cache
        self._on_change = on_change
        self._on_fatal = on_fatal

        self._state = SubmissionState()
        self._waiting_info: WaitingInfo | None = None
        self._round: Round | None = None
        self._round_started_at_ms: float | None = None
        self._round_generation = 0

    @property
    def state(self) -> SubmissionState:
        return self._state.snapshot()

    @property
    def waiting_info(self) -> WaitingInfo | None:
        return self._waiting_info

    @property
    def current_round(self) -> Round | None:
        return self._round

    def begin_round(self, round_: Round, started_at_ms: float | None = None) -> None:
        """Reset per-round state; the only place ``has_submitted`` goes back to False."""
        self._round_generation += 1
        self._round = round_
        self._round_started_at_ms = self._clock.now_ms() if started_at_ms is None else started_at_ms
        self._state = SubmissionState()
        self._waiting_info = None

    def close_round(self) -> None:
        """Stop accepting answers without forgetting what was submitted."""
        self._round = None

    def mark_timed_out(self) -> bool:
        """Record a forced zero-credit submission; False if an answer is already in or on its way."""
        if self._state.has_submitted or self._state.in_flight:
            return False
        self._state.has_submitted = True
        self._state.timed_out = True
        self._changed()
        return True

    def check_preconditions(self) -> SubmissionResult | None:
        if self._state.in_flight:
            return SubmissionResult(SubmissionOutcome.REJECTED_IN_FLIGHT)
        if self._state.has_submitted:
            return SubmissionResult(SubmissionOutcome.REJECTED_ALREADY_SUBMITTED)
        if self._round is None:
            return SubmissionResult(SubmissionOutcome.REJECTED_NO_ROUND)
        deadline = self._skew.deadline_ms
        if deadline is not None and self._skew.server_now_ms() >= deadline - self._config.submission_guard_ms:
            return SubmissionResult(SubmissionOutcome.REJECTED_TOO_LATE, notice=_TOO_LATE)
        return None

    async def submit(self, option_id: str) -> SubmissionResult:
        rejection = self.check_preconditions()
        if rejection is not None:
            logger.debug("Submission of option %s rejected: %s", option_id, rejection.outcome.value)
            return rejection

        round_ = self._round
        generation = self._round_generation
        self._state.in_flight = True
        self._state.selected_option_id = str(option_id)
        self._changed()
        response_time_ms = self._response_time_ms()

        try:
            try:
                response = await self._api.submit_answer(
                    self._session_id, round_.id, str(option_id), response_time_ms
                )
            except GameApiTransportError as exc:
                logger.warning("Answer submission failed: %s", exc)
                if generation != self._round_generation:
                    return SubmissionResult(SubmissionOutcome.STALE_ROUND)
                return SubmissionResult(SubmissionOutcome.TRANSIENT_FAILURE, notice=_NETWORK_ERROR)
            except Exception:
                logger.exception("Answer submission for round %s failed unexpectedly", round_.id)
                if generation != self._round_generation:
                    return SubmissionResult(SubmissionOutcome.STALE_ROUND)
                return SubmissionResult(SubmissionOutcome.TRANSIENT_FAILURE, notice=_UNEXPECTED)

            if generation != self._round_generation:
                logger.info("Round %s was replaced while its answer was in flight", round_.id)
                return SubmissionResult(SubmissionOutcome.STALE_ROUND, status=response.status)
            return self._interpret(response, response_time_ms)
        finally:
            if generation == self._round_generation:
                self._state.in_flight = False
                self._changed()

    def _response_time_ms(self) -> int:
        if self._round_started_at_ms is None:
            return FALLBACK_RESPONSE_TIME_MS
        return max(0, int(self._clock.now_ms() - self._round_started_at_ms))

    def _interpret(self, response: ApiResponse, response_time_ms: int) -> SubmissionResult:
        status = response.status
        logger.info("Answer for round %s answered with HTTP %d", self._round.id if self._round else "?", status)

        if status in (200, 409):
            receipt = _parse_receipt(response.body)
            self._state.has_submitted = True
            if status == 200 and self._response_cache is not None:
                self._response_cache.record(self._user_uid, response_time_ms)
            already = status == 409 or receipt.already_submitted
            notice = _ALREADY if already else None

            if receipt.all_submitted:
                self._waiting_info = None
                self._poller.poll_now()
                return SubmissionResult(
                    SubmissionOutcome.ALL_SUBMITTED, status, receipt.correct, notice=notice
                )

            self._waiting_info = WaitingInfo(
                submitted_count=receipt.submitted_count,
                expected_participants=receipt.expected_participants,
            )
            self._poller.resume()
            outcome = SubmissionOutcome.ALREADY_SUBMITTED if already else SubmissionOutcome.ACCEPTED
            return SubmissionResult(outcome, status, receipt.correct, self._waiting_info, notice)

        if status == 410:
            self._state.has_submitted = True
            self._poller.poll_now()
            return SubmissionResult(SubmissionOutcome.ROUND_CLOSED, status)

        if status == 422:
            self._poller.poll_now()
            return SubmissionResult(SubmissionOutcome.INVALID_OPTION, status, notice=_INVALID)

        if status in (403, 404):
            self._poller.stop()
            if self._on_fatal is not None:
                self._on_fatal(SessionFatalError(f"Answer rejected with HTTP {status}", status))
            return SubmissionResult(SubmissionOutcome.SESSION_FATAL, status, notice=_FATAL)

        notice = _SERVER_ERROR if status >= 500 else _UNEXPECTED
        if status < 500:
            logger.warning("Unexpected answer status %d: %r", status, response.body)
        return SubmissionResult(SubmissionOutcome.TRANSIENT_FAILURE, status, notice=notice)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()


def _parse_receipt(body: object) -> AnswerReceipt:
    if not isinstance(body, dict):
        return AnswerReceipt()
    try:
        return AnswerReceipt.model_validate(body)
    except ValidationError:
        logger.warning("Malformed answer receipt: %r", body)
        return AnswerReceipt()
