"""Tests for classification of current-round responses."""

import pytest

from party_sync.api.game_api import ApiResponse
from party_sync.core.round_classifier import (
    ActiveRound,
    Finished,
    Transient,
    WaitingNext,
    classify_round_response,
)

from conftest import START_MS, active_round, no_round


def test_active_round_is_parsed():
    result = classify_round_response(active_round("r7", round_no=3))

    assert isinstance(result, ActiveRound)
    assert result.round.id == "r7"
    assert result.round.round_no == 3
    assert [option.id for option in result.round.options] == ["a", "b", "c"]
    assert result.round.server_time_ms == START_MS
    assert result.round.expires_at_ms == START_MS + 30_000


@pytest.mark.parametrize("status", [204, 404])
def test_waiting_next_header(status):
    assert classify_round_response(no_round("WAITING_NEXT", status)) == WaitingNext()


@pytest.mark.parametrize("status", [204, 404])
def test_finished_header(status):
    assert classify_round_response(no_round("FINISHED", status)) == Finished()


def test_header_value_is_case_insensitive():
    assert classify_round_response(no_round(" finished ")) == Finished()


def test_bare_204_means_between_rounds():
    assert classify_round_response(no_round(None, 204)) == WaitingNext()


def test_bare_404_is_transient():
    result = classify_round_response(no_round(None, 404))

    assert isinstance(result, Transient)
    assert result.status == 404


def test_unknown_phase_is_transient():
    assert isinstance(classify_round_response(no_round("PAUSED")), Transient)


@pytest.mark.parametrize("status", [500, 502, 503, 401, 429])
def test_other_statuses_are_transient(status):
    result = classify_round_response(ApiResponse(status, {"error": "nope"}))

    assert result == Transient(status, "unexpected status")


@pytest.mark.parametrize("body", [None, {}, {"question": "no id"}, ["r1"], "r1"])
def test_unusable_round_body_is_transient(body):
    result = classify_round_response(ApiResponse(200, body))

    assert isinstance(result, Transient)
    assert result.status == 200


def test_legacy_round_shape_is_accepted():
    body = {
        "roundId": 12,
        "question": "Capital of France?",
        "options": [{"id": 1, "text": "Paris"}, {"id": 2, "text": "Rome"}],
        "expireAtMillis": "2023-11-14T22:13:50Z",
        "serverTimeMs": 1_700_000_000,
    }

    result = classify_round_response(ApiResponse(200, body))

    assert isinstance(result, ActiveRound)
    assert result.round.id == "12"
    assert result.round.question.text == "Capital of France?"
    assert result.round.has_option("1")
    assert result.round.expires_at_ms == 1_700_000_030_000
    assert result.round.server_time_ms == 1_700_000_000_000
