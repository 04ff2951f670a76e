"""Shared fixtures: a manually driven clock and a scriptable game API."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
import heapq
import itertools

import pytest

from party_sync.api.game_api import ApiResponse
from party_sync.core.clock_skew import ClockSkewCorrector
from party_sync.core.sync_config import SyncConfig

START_MS = 1_700_000_000_000.0


async def settle(rounds: int = 50) -> None:
    """Let every ready callback and task run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Clock whose time only moves when a test calls :meth:`advance`."""

    def __init__(self, start_ms: float = START_MS) -> None:
        self._now = float(start_ms)
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._sequence = itertools.count()
        self.sleeps: list[float] = []

    def now_ms(self) -> float:
        return self._now

    async def sleep(self, delay_ms: float) -> None:
        self.sleeps.append(delay_ms)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + max(0.0, delay_ms), next(self._sequence), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, delay_ms: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self._now + delay_ms
        await settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake_at, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, wake_at)
            if not future.done():
                future.set_result(None)
                await settle()
        self._now = target
        await settle()


def round_body(
    round_id: str = "r1",
    *,
    server_time_ms: float | None = START_MS,
    expires_in_ms: float | None = 30_000,
    options: tuple[str, ...] = ("a", "b", "c"),
    round_no: int = 1,
) -> dict:
    body: dict = {
        "roundId": round_id,
        "roundNo": round_no,
        "question": {
            "id": f"q-{round_id}",
            "text": f"Question for {round_id}?",
            "options": [{"id": option, "text": option.upper()} for option in options],
        },
    }
    if server_time_ms is not None:
        body["serverTimeMs"] = int(server_time_ms)
        if expires_in_ms is not None:
            body["expiresAtMs"] = int(server_time_ms + expires_in_ms)
    return body


def active_round(round_id: str = "r1", **kwargs) -> ApiResponse:
    return ApiResponse(200, round_body(round_id, **kwargs), {"content-type": "application/json"})


def no_round(phase: str | None = "WAITING_NEXT", status: int = 204) -> ApiResponse:
    headers = {"x-round-phase": phase} if phase else {}
    return ApiResponse(status, None, headers)


def answer_ok(all_submitted: bool = False, submitted: int = 1, expected: int = 3, **extra) -> ApiResponse:
    body = {
        "correct": True,
        "allSubmitted": all_submitted,
        "submittedCount": submitted,
        "expectedParticipants": expected,
    }
    body.update(extra)
    return ApiResponse(200, body)


class FakeGameApi:
    """Stands in for :class:`GameApiClient` with per-endpoint response queues.

    Queued items may be exceptions, which are raised instead of returned.
    When a queue runs dry the endpoint's default response is used.
    """

    def __init__(self) -> None:
        self.queues: dict[str, deque] = defaultdict(deque)
        self.defaults: dict[str, ApiResponse] = {
            "fetch_current_round": no_round("WAITING_NEXT"),
            "submit_answer": answer_ok(),
            "fetch_scores": ApiResponse(200, []),
            "fetch_results": ApiResponse(422, {"code": "AGGREGATION_PENDING"}),
            "fetch_session": ApiResponse(200, {"status": "IN_PROGRESS"}),
            "finish_session": ApiResponse(200, {}),
        }
        self.calls: list[tuple[str, tuple]] = []
        self.round_gate: asyncio.Event | None = None
        self.submit_gate: asyncio.Event | None = None
        self.rounds_in_flight = 0
        self.max_rounds_in_flight = 0

    def script(self, endpoint: str, *responses: object) -> None:
        self.queues[endpoint].extend(responses)

    def count(self, endpoint: str) -> int:
        return sum(1 for name, _ in self.calls if name == endpoint)

    def calls_to(self, endpoint: str) -> list[tuple]:
        return [args for name, args in self.calls if name == endpoint]

    def _next(self, endpoint: str) -> ApiResponse:
        queue = self.queues[endpoint]
        item = queue.popleft() if queue else self.defaults[endpoint]
        if isinstance(item, BaseException):
            raise item
        return item

    async def fetch_current_round(self, session_id: str) -> ApiResponse:
        self.calls.append(("fetch_current_round", (session_id,)))
        self.rounds_in_flight += 1
        self.max_rounds_in_flight = max(self.max_rounds_in_flight, self.rounds_in_flight)
        try:
            if self.round_gate is not None:
                await self.round_gate.wait()
            return self._next("fetch_current_round")
        finally:
            self.rounds_in_flight -= 1

    async def submit_answer(self, session_id: str, round_id: str, option_id: str, response_time_ms: int) -> ApiResponse:
        self.calls.append(("submit_answer", (session_id, round_id, option_id, response_time_ms)))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        return self._next("submit_answer")

    async def fetch_scores(self, session_id: str) -> ApiResponse:
        self.calls.append(("fetch_scores", (session_id,)))
        return self._next("fetch_scores")

    async def fetch_results(self, session_id: str) -> ApiResponse:
        self.calls.append(("fetch_results", (session_id,)))
        return self._next("fetch_results")

    async def fetch_session(self, session_id: str) -> ApiResponse:
        self.calls.append(("fetch_session", (session_id,)))
        return self._next("fetch_session")

    async def finish_session(self, session_id: str) -> ApiResponse:
        self.calls.append(("finish_session", (session_id,)))
        return self._next("finish_session")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def api() -> FakeGameApi:
    return FakeGameApi()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig()


@pytest.fixture
def skew(clock: ManualClock, config: SyncConfig) -> ClockSkewCorrector:
    return ClockSkewCorrector(clock, nominal_round_ms=config.nominal_round_ms)
