"""Domain models for the round synchronization engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RoundPhase(str, Enum):
    """Server-reported lifecycle stage of the round sequence."""

    NO_ROUND = "NO_ROUND"
    ACTIVE = "ACTIVE"
    WAITING_NEXT = "WAITING_NEXT"
    FINISHED = "FINISHED"


class GameType(str, Enum):
    """Mini-game flavour; decides the ranking direction."""

    QUIZ = "QUIZ"
    REACTION = "REACTION"

    @property
    def higher_is_better(self) -> bool:
        return self is GameType.QUIZ


class EngineStage(str, Enum):
    """Client-side lifecycle of one game session."""

    NO_ROUND = "NO_ROUND"
    ACTIVE = "ACTIVE"
    WAITING_NEXT = "WAITING_NEXT"
    FINISHED = "FINISHED"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    DEGRADED_DONE = "DEGRADED_DONE"
    ABORTED = "ABORTED"

    @property
    def is_terminal(self) -> bool:
        return self in (EngineStage.DONE, EngineStage.DEGRADED_DONE, EngineStage.ABORTED)


@dataclass(slots=True, frozen=True)
class QuestionOption:
    """One selectable answer of a round."""

    id: str
    text: str


@dataclass(slots=True, frozen=True)
class Question:
    """Question payload shown during a round."""

    id: str
    text: str
    options: tuple[QuestionOption, ...] = ()


@dataclass(slots=True, frozen=True)
class Round:
    """A timed question unit as issued by the server.

    ``expires_at_ms`` and ``server_time_ms`` are both on the server clock and
    are only ever interpreted together by the skew corrector.
    """

    id: str
    question: Question
    phase: RoundPhase = RoundPhase.ACTIVE
    round_no: int | None = None
    category: str | None = None
    expires_at_ms: int | None = None
    server_time_ms: int | None = None

    @property
    def options(self) -> tuple[QuestionOption, ...]:
        return self.question.options

    def has_option(self, option_id: str) -> bool:
        return any(option.id == str(option_id) for option in self.question.options)


@dataclass(slots=True)
class SubmissionState:
    """Per-round answer bookkeeping.

    ``has_submitted`` is only ever reset by applying a new round.
    """

    has_submitted: bool = False
    in_flight: bool = False
    selected_option_id: str | None = None
    timed_out: bool = False

    def snapshot(self) -> "SubmissionState":
        return SubmissionState(
            has_submitted=self.has_submitted,
            in_flight=self.in_flight,
            selected_option_id=self.selected_option_id,
            timed_out=self.timed_out,
        )


@dataclass(slots=True, frozen=True)
class WaitingInfo:
    """Progress of the other participants after our answer was accepted."""

    submitted_count: int
    expected_participants: int


@dataclass(slots=True)
class PollSchedule:
    """Backoff bookkeeping for the result aggregation loop."""

    floor_ms: float
    cap_ms: float
    factor: float
    delay_ms: float = 0.0
    attempt: int = 0
    last_reinforce_at_ms: float | None = None
    started_at_ms: float = 0.0

    def __post_init__(self) -> None:
        if not self.delay_ms:
            self.delay_ms = self.floor_ms

    def advance(self) -> float:
        """Grow the delay multiplicatively up to the ceiling and return it."""
        self.delay_ms = min(self.cap_ms, self.delay_ms * self.factor)
        return self.delay_ms

    def reset(self, started_at_ms: float) -> None:
        self.delay_ms = self.floor_ms
        self.attempt = 0
        self.last_reinforce_at_ms = None
        self.started_at_ms = started_at_ms

    def reinforce_due(self, now_ms: float, interval_ms: float) -> bool:
        if self.last_reinforce_at_ms is None:
            return True
        return now_ms - self.last_reinforce_at_ms >= interval_ms


@dataclass(slots=True, frozen=True)
class ScoreEntry:
    """One leaderboard row.

    ``rank`` is ``None`` for participants that did not finish (DNF).
    """

    user_uid: str
    score: float | None
    rank: int | None = None
    response_time_ms: float | None = None
    display_name: str | None = None
    correct_count: int | None = None
    dnf: bool = False

    @property
    def label(self) -> str:
        if self.display_name:
            return self.display_name
        return f"Player {self.user_uid[-4:]}"


@dataclass(slots=True, frozen=True)
class FinalStandings:
    """Final ranking of a session; ``degraded`` marks a locally synthesized result."""

    session_id: str
    entries: tuple[ScoreEntry, ...]
    winner_uid: str | None = None
    degraded: bool = False
    message: str | None = None
    produced_at_ms: float | None = None


class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class Notice:
    """User-facing message raised by the engine."""

    level: NoticeLevel
    code: str
    message: str


@dataclass(slots=True, frozen=True)
class EngineSnapshot:
    """Immutable view of the engine published to collaborators."""

    stage: EngineStage
    round: Round | None = None
    remaining_seconds: int | None = None
    submission: SubmissionState = field(default_factory=SubmissionState)
    waiting_info: WaitingInfo | None = None
    scoreboard: tuple[ScoreEntry, ...] = ()
    standings: FinalStandings | None = None
    status_message: str | None = None
    notice: Notice | None = None
