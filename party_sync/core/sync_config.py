"""Tunable parameters of the synchronization engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace

from party_sync.constants import timing_constants as timing

# camelCase option names accepted from callers and the CLI.
_OPTION_NAMES: dict[str, str] = {
    "nominalRoundMs": "nominal_round_ms",
    "activePollMs": "active_poll_ms",
    "transitionPollMs": "transition_poll_ms",
    "submissionGuardMs": "submission_guard_ms",
    "backoffFloorMs": "backoff_floor_ms",
    "backoffCapMs": "backoff_cap_ms",
    "backoffFactor": "backoff_factor",
    "reinforceIntervalMs": "reinforce_interval_ms",
    "degradedModeTimeoutMs": "degraded_mode_timeout_ms",
    "transientPollMs": "transient_poll_ms",
    "errorPollMs": "error_poll_ms",
    "tickIntervalMs": "tick_interval_ms",
    "maxSilentFailures": "max_silent_failures",
    "scoreboardPollMs": "scoreboard_poll_ms",
    "statusCheckEveryTicks": "status_check_every_ticks",
}


@dataclass(slots=True, frozen=True)
class SyncConfig:
    """Numeric knobs for polling cadence, countdown, backoff and degraded mode."""

    nominal_round_ms: int = timing.NOMINAL_ROUND_MS
    active_poll_ms: int = timing.ACTIVE_POLL_MS
    transition_poll_ms: int = timing.TRANSITION_POLL_MS
    submission_guard_ms: int = timing.SUBMISSION_GUARD_MS
    backoff_floor_ms: float = timing.BACKOFF_FLOOR_MS
    backoff_cap_ms: float = timing.BACKOFF_CAP_MS
    backoff_factor: float = timing.BACKOFF_FACTOR
    reinforce_interval_ms: int = timing.REINFORCE_INTERVAL_MS
    degraded_mode_timeout_ms: int = timing.DEGRADED_MODE_TIMEOUT_MS
    transient_poll_ms: int = timing.TRANSIENT_POLL_MS
    error_poll_ms: int = timing.ERROR_POLL_MS
    tick_interval_ms: int = timing.COUNTDOWN_TICK_MS
    max_silent_failures: int = timing.MAX_SILENT_FAILURES
    scoreboard_poll_ms: int = timing.SCOREBOARD_POLL_MS
    status_check_every_ticks: int = timing.STATUS_CHECK_EVERY_TICKS

    def __post_init__(self) -> None:
        for spec_field in fields(self):
            value = getattr(self, spec_field.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{spec_field.name} must be a number, got {value!r}.")
            if value <= 0:
                raise ValueError(f"{spec_field.name} must be positive, got {value!r}.")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be at least 1.")
        if self.backoff_floor_ms > self.backoff_cap_ms:
            raise ValueError("backoff_floor_ms must not exceed backoff_cap_ms.")
        if self.tick_interval_ms < timing.MIN_TICK_INTERVAL_MS:
            raise ValueError(f"tick_interval_ms must be at least {timing.MIN_TICK_INTERVAL_MS}.")

    @property
    def nominal_round_seconds(self) -> int:
        return self.nominal_round_ms // 1000

    @classmethod
    def from_options(cls, options: Mapping[str, object] | None = None) -> "SyncConfig":
        """Build a config from camelCase option names, rejecting unknown ones."""
        if not options:
            return cls()
        unknown = sorted(set(options) - set(_OPTION_NAMES))
        if unknown:
            raise ValueError(f"Unrecognized sync options: {', '.join(unknown)}")
        return cls(**{_OPTION_NAMES[name]: value for name, value in options.items()})

    def with_options(self, **overrides: object) -> "SyncConfig":
        return replace(self, **overrides)
