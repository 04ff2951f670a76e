"""Leaderboard ordering and locally synthesized final standings."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
import math

from party_sync.core.models import FinalStandings, GameType, ScoreEntry

DEGRADED_MESSAGE = "Results generated from partial scores (server aggregation failed)"


def has_result(entry: ScoreEntry, game_type: GameType) -> bool:
    """Whether ``entry`` carries a rankable score for ``game_type``.

    A missing score never ranks. For reaction games a non-positive time is
    also meaningless and is treated the same way.
    """
    if entry.score is None or not math.isfinite(entry.score):
        return False
    if game_type is GameType.REACTION and entry.score <= 0:
        return False
    return True


def _sort_key(entry: ScoreEntry, game_type: GameType) -> tuple[float, float]:
    primary = -entry.score if game_type.higher_is_better else entry.score
    tiebreak = entry.response_time_ms if entry.response_time_ms is not None else math.inf
    return primary, tiebreak


def rank_entries(entries: Iterable[ScoreEntry], game_type: GameType) -> list[ScoreEntry]:
    """Order entries best-first and assign competition ranks (1, 1, 3, ...).

    Ties on score are broken by response time ascending; entries equal on
    both share a rank. Entries without a result are appended as DNF with no
    rank, ordered by user id.
    """
    finished: list[ScoreEntry] = []
    unfinished: list[ScoreEntry] = []
    for entry in entries:
        (finished if has_result(entry, game_type) else unfinished).append(entry)

    finished.sort(key=lambda entry: (_sort_key(entry, game_type), entry.user_uid))
    ranked: list[ScoreEntry] = []
    previous_key: tuple[float, float] | None = None
    previous_rank = 0
    for position, entry in enumerate(finished, start=1):
        key = _sort_key(entry, game_type)
        rank = previous_rank if key == previous_key else position
        ranked.append(replace(entry, rank=rank, dnf=False))
        previous_key, previous_rank = key, rank

    unfinished.sort(key=lambda entry: entry.user_uid)
    ranked.extend(replace(entry, rank=None, dnf=True) for entry in unfinished)
    return ranked


def synthesize_standings(
    session_id: str,
    partial: Iterable[ScoreEntry],
    game_type: GameType,
    best_times: Mapping[str, float] | None = None,
    participants: Iterable[str] = (),
    produced_at_ms: float | None = None,
) -> FinalStandings:
    """Build degraded final standings from a partial snapshot.

    Locally cached best response times are merged per user. For reaction games
    the cached time is the score; for quiz games it only fills a missing
    response time. Known participants with neither source end up DNF.
    """
    best_times = dict(best_times or {})
    merged: dict[str, ScoreEntry] = {}

    for entry in partial:
        cached = best_times.get(entry.user_uid)
        if cached is not None and game_type is GameType.REACTION:
            entry = replace(entry, score=cached, response_time_ms=cached)
        elif cached is not None and entry.response_time_ms is None:
            entry = replace(entry, response_time_ms=cached)
        merged[entry.user_uid] = entry

    for user_uid, cached in best_times.items():
        if user_uid in merged:
            continue
        score = cached if game_type is GameType.REACTION else None
        merged[user_uid] = ScoreEntry(user_uid=user_uid, score=score, response_time_ms=cached)

    for user_uid in participants:
        merged.setdefault(user_uid, ScoreEntry(user_uid=user_uid, score=None))

    ranked = tuple(rank_entries(merged.values(), game_type))
    winner = ranked[0].user_uid if ranked and not ranked[0].dnf else None
    return FinalStandings(
        session_id=session_id,
        entries=ranked,
        winner_uid=winner,
        degraded=True,
        message=DEGRADED_MESSAGE,
        produced_at_ms=produced_at_ms,
    )
