"""Tests for the live scoreboard poller."""

import httpx
import pytest

from party_sync.api.game_api import ApiResponse
from party_sync.core.errors import GameApiTransportError
from party_sync.core.models import GameType
from party_sync.core.services.scoreboard_poller import ScoreboardPoller


def make_poller(api, clock, config, game_type=GameType.QUIZ):
    published = []
    poller = ScoreboardPoller(api, "s1", game_type, clock, config, on_change=published.append)
    return poller, published


@pytest.mark.asyncio
async def test_publishes_ranked_rows_only_when_changed(api, clock, config):
    api.defaults["fetch_scores"] = ApiResponse(200, [{"userUid": "a", "score": 10}, {"userUid": "b", "score": 20}])
    poller, published = make_poller(api, clock, config)

    poller.start()
    await clock.advance(3_000)

    assert api.count("fetch_scores") == 4
    assert len(published) == 1
    assert [(entry.user_uid, entry.rank) for entry in published[0]] == [("b", 1), ("a", 2)]

    api.defaults["fetch_scores"] = ApiResponse(200, [{"userUid": "a", "score": 30}, {"userUid": "b", "score": 20}])
    await clock.advance(1_000)

    assert len(published) == 2
    assert poller.entries[0].user_uid == "a"
    poller.stop()


@pytest.mark.asyncio
async def test_failures_are_ignored(api, clock, config):
    api.script("fetch_scores", GameApiTransportError("down"), ApiResponse(500), ApiResponse(200, [{"userUid": "a", "deltaMs": 300}]))
    poller, published = make_poller(api, clock, config, GameType.REACTION)

    poller.start()
    await clock.advance(2_000)

    assert len(published) == 1
    assert published[0][0].score == 300
    assert poller.is_running
    poller.stop()


@pytest.mark.asyncio
async def test_stop_ends_the_loop(api, clock, config):
    poller, _ = make_poller(api, clock, config)
    poller.start()
    await clock.advance(1_000)

    poller.stop()
    calls = api.count("fetch_scores")
    await clock.advance(5_000)

    assert api.count("fetch_scores") == calls
    assert not poller.is_running


@pytest.mark.asyncio
async def test_unexpected_errors_keep_the_loop_alive(api, clock, config):
    api.script("fetch_scores", httpx.DecodingError("bad gzip"), RuntimeError("boom"), ApiResponse(200, [{"userUid": "a", "score": 5}]))
    poller, published = make_poller(api, clock, config)

    poller.start()
    await clock.advance(2_000)

    assert api.count("fetch_scores") == 3
    assert [entry.user_uid for entry in published[0]] == ["a"]
    assert poller.is_running
    poller.stop()


@pytest.mark.asyncio
async def test_failing_listener_keeps_the_loop_alive(api, clock, config):
    api.defaults["fetch_scores"] = ApiResponse(200, [{"userUid": "a", "score": 5}])

    def explode(entries):
        raise RuntimeError("listener bug")

    poller = ScoreboardPoller(api, "s1", GameType.QUIZ, clock, config, on_change=explode)
    poller.start()
    await clock.advance(2_000)

    assert api.count("fetch_scores") == 3
    assert poller.is_running
    poller.stop()
