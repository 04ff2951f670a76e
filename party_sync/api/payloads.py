"""Payload schemas for the game REST API."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from party_sync.core.models import (
    FinalStandings,
    GameType,
    Question,
    QuestionOption,
    Round,
    RoundPhase,
    ScoreEntry,
)
from party_sync.core.ranking import rank_entries
from party_sync.core.timestamps import normalize_millis

# Server field spellings, first non-empty one wins.
_EXPIRY_KEYS = ("expiresAtMs", "expireAtMillis", "expiresAt")
_USER_KEYS = ("userUid", "uid")
_SCORE_KEYS = ("totalScore", "score", "deltaMs", "avgReactionTime", "reactionTime")
_RESPONSE_TIME_KEYS = ("totalResponseTime", "bestTimeMs", "bestMs", "deltaMs", "avgReactionTime", "reactionTime")
_NAME_KEYS = ("nickname", "displayName")
_CORRECT_KEYS = ("correctCount", "successfulRounds")
_RESULT_ROW_KEYS = ("players", "overallRanking", "results", "ranking")


def _first_present(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


IdText = Annotated[str, BeforeValidator(_as_text)]


class ApiPayload(BaseModel):
    """Base schema: camelCase on the wire, unknown fields ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class OptionPayload(ApiPayload):
    id: IdText
    text: str = ""

    def to_option(self) -> QuestionOption:
        return QuestionOption(id=self.id, text=self.text)


class QuestionPayload(ApiPayload):
    id: IdText
    text: str = ""
    options: list[OptionPayload] = []

    def to_question(self) -> Question:
        return Question(
            id=self.id,
            text=self.text,
            options=tuple(option.to_option() for option in self.options),
        )


class RoundPayload(ApiPayload):
    """Body of ``GET /sessions/{id}/rounds/current`` when a round is active."""

    round_id: IdText
    question: QuestionPayload
    round_no: int | None = None
    category: str | None = None
    expires_at_ms: int | None = None
    server_time_ms: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        expiry = _first_present(data, _EXPIRY_KEYS)
        data["expiresAtMs"] = expiry
        data.pop("expires_at_ms", None)

        question = data.get("question")
        if isinstance(question, str):
            question = {"id": data.get("roundId"), "text": question}
        elif isinstance(question, dict):
            question = dict(question)
        if isinstance(question, dict):
            if question.get("id") is None:
                question["id"] = data.get("roundId")
            if not question.get("options") and data.get("options"):
                question["options"] = data["options"]
            data["question"] = question
        return data

    @field_validator("expires_at_ms", "server_time_ms", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> int | None:
        return normalize_millis(value)

    def to_round(self) -> Round:
        return Round(
            id=self.round_id,
            question=self.question.to_question(),
            phase=RoundPhase.ACTIVE,
            round_no=self.round_no,
            category=self.category,
            expires_at_ms=self.expires_at_ms,
            server_time_ms=self.server_time_ms,
        )


class AnswerPayload(ApiPayload):
    """Request body for submitted answers."""

    option_id: int | str
    response_time_ms: int

    @field_validator("option_id", mode="before")
    @classmethod
    def _numeric_option(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value)
        return value


class AnswerReceipt(ApiPayload):
    """Body of a 200/409/410/422 answer response."""

    correct: bool | None = None
    all_submitted: bool = False
    submitted_count: int = 0
    expected_participants: int = 1
    already_submitted: bool = False
    code: str | None = None

    @field_validator("submitted_count", "expected_participants", mode="before")
    @classmethod
    def _default_counts(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return 0 if info.field_name == "submitted_count" else 1
        return value


class ScoreRowPayload(ApiPayload):
    """One row of ``/scores`` or of the final results."""

    user_uid: str
    score: float | None = None
    response_time_ms: float | None = None
    display_name: str | None = None
    correct_count: int | None = None
    rank: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _pick_spellings(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            "userUid": _as_text(_first_present(data, _USER_KEYS)),
            "score": _first_present(data, _SCORE_KEYS),
            "responseTimeMs": _first_present(data, _RESPONSE_TIME_KEYS),
            "displayName": _first_present(data, _NAME_KEYS),
            "correctCount": _first_present(data, _CORRECT_KEYS),
            "rank": data.get("rank"),
        }

    def to_entry(self) -> ScoreEntry:
        return ScoreEntry(
            user_uid=self.user_uid,
            score=self.score,
            rank=self.rank,
            response_time_ms=self.response_time_ms,
            display_name=self.display_name,
            correct_count=self.correct_count,
        )


class SessionPayload(ApiPayload):
    """Subset of ``GET /sessions/{id}`` used by the aggregation loop."""

    status: str | None = None
    host_uid: str | None = None
    participants: list[dict[str, Any]] = []

    def participant_uids(self) -> list[str]:
        uids = []
        for participant in self.participants:
            uid = _first_present(participant, _USER_KEYS)
            if uid is not None:
                uids.append(str(uid))
        return uids


class FinalResultsPayload(ApiPayload):
    """Body of ``GET /results/{id}`` once the server has aggregated the session."""

    rows: list[ScoreRowPayload]
    winner_uid: str | None = None
    message: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _find_rows(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"rows": data}
        if not isinstance(data, dict):
            return data
        rows = next((data[key] for key in _RESULT_ROW_KEYS if isinstance(data.get(key), list)), None)
        return {
            "rows": rows,
            "winnerUid": _as_text(data.get("winnerUid")),
            "message": data.get("message"),
        }

    def to_standings(self, session_id: str, game_type: GameType, produced_at_ms: float | None = None) -> FinalStandings:
        entries = [row.to_entry() for row in self.rows]
        if entries and all(entry.rank is not None for entry in entries):
            ranked = tuple(sorted(entries, key=lambda entry: entry.rank))
        else:
            ranked = tuple(rank_entries(entries, game_type))
        winner = self.winner_uid or (ranked[0].user_uid if ranked and not ranked[0].dnf else None)
        return FinalStandings(
            session_id=session_id,
            entries=ranked,
            winner_uid=winner,
            degraded=False,
            message=self.message,
            produced_at_ms=produced_at_ms,
        )


def parse_score_rows(body: Any) -> list[ScoreEntry]:
    """Parse a ``/scores`` body, skipping rows that carry no user id."""
    if not isinstance(body, list):
        return []
    entries: list[ScoreEntry] = []
    for raw in body:
        try:
            entries.append(ScoreRowPayload.model_validate(raw).to_entry())
        except ValidationError:
            continue
    return entries
