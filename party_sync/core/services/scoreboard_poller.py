"""Service keeping the live in-game leaderboard fresh."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging

from party_sync.api.game_api import GameApiClient
from party_sync.api.payloads import parse_score_rows
from party_sync.core.clock import SystemClock
from party_sync.core.errors import PartySyncError
from party_sync.core.models import GameType, ScoreEntry
from party_sync.core.ranking import rank_entries
from party_sync.core.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class ScoreboardPoller:
    """Refreshes ``/scores`` on a fixed cadence and republishes only on change."""

    def __init__(
        self,
        api: GameApiClient,
        session_id: str,
        game_type: GameType,
        clock: SystemClock | None = None,
        config: SyncConfig | None = None,
        on_change: Callable[[tuple[ScoreEntry, ...]], None] | None = None,
    ) -> None:
        self._api = api
        self._session_id = session_id
        self._game_type = game_type
        self._clock = clock or SystemClock()
        self._config = config or SyncConfig()
        self._on_change = on_change
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._entries: tuple[ScoreEntry, ...] = ()

    @property
    def entries(self) -> tuple[ScoreEntry, ...]:
        return self._entries

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.stop()
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation), name=f"scoreboard-{self._session_id}"
        )

    def stop(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def refresh(self) -> bool:
        """Fetch once; return True when the published leaderboard changed."""
        generation = self._generation
        try:
            response = await self._api.fetch_scores(self._session_id)
        except PartySyncError as exc:
            logger.debug("Scoreboard refresh failed: %s", exc)
            return False
        except Exception:
            logger.exception("Scoreboard refresh for session %s failed unexpectedly", self._session_id)
            return False
        if generation != self._generation:
            return False
        if response.status != 200:
            logger.debug("Scoreboard refresh answered HTTP %d", response.status)
            return False

        ranked = tuple(rank_entries(parse_score_rows(response.body), self._game_type))
        if ranked == self._entries:
            return False
        self._entries = ranked
        if self._on_change is not None:
            self._on_change(ranked)
        return True

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Scoreboard update for session %s failed", self._session_id)
            if generation != self._generation:
                return
            await self._clock.sleep(self._config.scoreboard_poll_ms)
