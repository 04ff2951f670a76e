"""Tests for REST payload schemas."""

import pytest
from pydantic import ValidationError

from party_sync.api.payloads import (
    AnswerPayload,
    AnswerReceipt,
    FinalResultsPayload,
    SessionPayload,
    parse_score_rows,
)
from party_sync.core.models import GameType


def test_answer_payload_serializes_camel_case():
    payload = AnswerPayload(option_id="3", response_time_ms=1234)

    assert payload.model_dump(by_alias=True) == {"optionId": 3, "responseTimeMs": 1234}
    assert AnswerPayload(option_id="b", response_time_ms=1).option_id == "b"


def test_answer_receipt_defaults_missing_counts():
    receipt = AnswerReceipt.model_validate({"correct": False, "submittedCount": None, "expectedParticipants": None})

    assert receipt.correct is False
    assert receipt.submitted_count == 0
    assert receipt.expected_participants == 1
    assert not receipt.all_submitted


def test_score_rows_accept_alternate_spellings():
    rows = parse_score_rows(
        [
            {"userUid": "u-1", "totalScore": 30, "nickname": "Ann", "correctCount": 3},
            {"uid": 42, "deltaMs": 310},
            {"nickname": "ghost", "score": 5},
            "garbage",
        ]
    )

    assert [row.user_uid for row in rows] == ["u-1", "42"]
    assert rows[0].score == 30
    assert rows[0].label == "Ann"
    assert rows[0].correct_count == 3
    assert rows[1].score == 310
    assert rows[1].response_time_ms == 310
    assert rows[1].label == "Player 42"


def test_score_rows_of_non_list_body_are_empty():
    assert parse_score_rows({"players": []}) == []
    assert parse_score_rows(None) == []


@pytest.mark.parametrize("key", ["players", "overallRanking", "results", "ranking"])
def test_final_results_row_keys(key):
    payload = FinalResultsPayload.model_validate({key: [{"userUid": "a", "score": 1}], "winnerUid": "a"})

    assert [row.user_uid for row in payload.rows] == ["a"]
    assert payload.winner_uid == "a"


def test_final_results_without_rows_are_rejected():
    with pytest.raises(ValidationError):
        FinalResultsPayload.model_validate({"status": "PENDING"})


def test_final_results_keep_server_ranks():
    payload = FinalResultsPayload.model_validate(
        {"players": [{"userUid": "b", "score": 10, "rank": 2}, {"userUid": "a", "score": 5, "rank": 1}]}
    )

    standings = payload.to_standings("s1", GameType.QUIZ, 99.0)

    assert [entry.user_uid for entry in standings.entries] == ["a", "b"]
    assert standings.winner_uid == "a"
    assert not standings.degraded


def test_final_results_are_ranked_locally_without_ranks():
    payload = FinalResultsPayload.model_validate(
        [{"userUid": "a", "reactionTime": 400}, {"userUid": "b", "reactionTime": 220}, {"userUid": "c"}]
    )

    standings = payload.to_standings("s1", GameType.REACTION)

    assert [(entry.user_uid, entry.rank) for entry in standings.entries] == [("b", 1), ("a", 2), ("c", None)]
    assert standings.winner_uid == "b"


def test_session_participants():
    session = SessionPayload.model_validate(
        {"status": "IN_PROGRESS", "hostUid": "h", "participants": [{"userUid": "a"}, {"uid": 7}, {"name": "x"}]}
    )

    assert session.host_uid == "h"
    assert session.participant_uids() == ["a", "7"]
