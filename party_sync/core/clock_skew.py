"""Client/server clock offset handling for round deadlines."""

from __future__ import annotations

import logging

from party_sync.constants.timing_constants import (
    NOMINAL_ROUND_MS,
    SKEW_MAX_REMAINING_MS,
    SKEW_MIN_REMAINING_MS,
)
from party_sync.core.clock import SystemClock

logger = logging.getLogger(__name__)


class ClockSkewCorrector:
    """Anchors round deadlines to the server clock.

    The offset is re-anchored on every round application and never averaged
    across rounds, so one bad sample only affects the round it came with.
    """

    def __init__(
        self,
        clock: SystemClock | None = None,
        nominal_round_ms: int = NOMINAL_ROUND_MS,
        min_remaining_ms: int = SKEW_MIN_REMAINING_MS,
        max_remaining_ms: int = SKEW_MAX_REMAINING_MS,
    ) -> None:
        self._clock = clock or SystemClock()
        self._nominal_round_ms = nominal_round_ms
        self._min_remaining_ms = min_remaining_ms
        self._max_remaining_ms = max_remaining_ms
        self._offset_ms: float = 0.0
        self._deadline_ms: float | None = None
        self._was_clamped: bool = False

    @property
    def offset_ms(self) -> float:
        return self._offset_ms

    @property
    def deadline_ms(self) -> float | None:
        return self._deadline_ms

    @property
    def was_clamped(self) -> bool:
        return self._was_clamped

    def apply_round_timing(self, server_time_ms: float | None, expires_at_ms: float | None) -> float:
        """Store the new offset and return the corrected deadline on the server clock."""
        local_now = self._clock.now_ms()
        self._offset_ms = server_time_ms - local_now if server_time_ms is not None else 0.0
        server_now = local_now + self._offset_ms

        deadline = expires_at_ms
        remaining = None if deadline is None else deadline - server_now
        self._was_clamped = remaining is None or not (
            self._min_remaining_ms <= remaining <= self._max_remaining_ms
        )
        if self._was_clamped:
            logger.warning(
                "Implausible round deadline (remaining=%s ms, offset=%.0f ms); clamping to %d ms",
                None if remaining is None else round(remaining),
                self._offset_ms,
                self._nominal_round_ms,
            )
            deadline = server_now + self._nominal_round_ms
        else:
            logger.debug("Round timing applied: offset=%.0f ms remaining=%.0f ms", self._offset_ms, remaining)

        self._deadline_ms = deadline
        return deadline

    def server_now_ms(self) -> float:
        return self._clock.now_ms() + self._offset_ms

    def remaining_ms(self, deadline_ms: float | None = None) -> float:
        deadline = self._deadline_ms if deadline_ms is None else deadline_ms
        if deadline is None:
            return 0.0
        return deadline - self.server_now_ms()

    def reset(self) -> None:
        self._offset_ms = 0.0
        self._deadline_ms = None
        self._was_clamped = False
