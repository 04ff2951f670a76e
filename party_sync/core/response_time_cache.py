"""Local per-session cache of raw response times recorded during play."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from party_sync.constants.network_constants import DEFAULT_CACHE_DIR

logger = logging.getLogger(__name__)


class ResponseTimeCache:
    """Append-only JSON-lines file per session, read back by degraded mode.

    Two clients of the same session writing to the same directory may
    interleave lines; that is not guarded against.
    """

    def __init__(self, session_id: str, cache_dir: Path | None = None) -> None:
        self._session_id = str(session_id)
        self._cache_dir = cache_dir or DEFAULT_CACHE_DIR

    @property
    def path(self) -> Path:
        return self._cache_dir / f"response_times_{self._session_id}.jsonl"

    def record(self, user_uid: str, response_time_ms: float) -> None:
        """Append one measurement. I/O failures are logged and dropped."""
        line = json.dumps({"userUid": str(user_uid), "responseTimeMs": float(response_time_ms)})
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError:
            logger.warning("Could not write response time cache %s", self.path, exc_info=True)

    def entries(self) -> list[tuple[str, float]]:
        if not self.path.exists():
            return []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError:
            logger.warning("Could not read response time cache %s", self.path, exc_info=True)
            return []

        measurements: list[tuple[str, float]] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                measurements.append((str(record["userUid"]), float(record["responseTimeMs"])))
            except (ValueError, KeyError, TypeError):
                logger.debug("Skipping malformed cache line: %r", line)
        return measurements

    def best_times(self) -> dict[str, float]:
        """Fastest recorded time per user; non-positive times are ignored."""
        best: dict[str, float] = {}
        for user_uid, response_time_ms in self.entries():
            if response_time_ms <= 0:
                continue
            current = best.get(user_uid)
            if current is None or response_time_ms < current:
                best[user_uid] = response_time_ms
        return best

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
