"""Timing constants shared by the round synchronization services."""

NOMINAL_ROUND_MS: int = 30_000
COUNTDOWN_TICK_MS: int = 500
MIN_TICK_INTERVAL_MS: int = 500

# Corrected remaining time outside this window is treated as clock corruption.
SKEW_MIN_REMAINING_MS: int = -5_000
SKEW_MAX_REMAINING_MS: int = 35_000

ACTIVE_POLL_MS: int = 1_000
TRANSITION_POLL_MS: int = 400
TRANSIENT_POLL_MS: int = 800
ERROR_POLL_MS: int = 1_000
MAX_SILENT_FAILURES: int = 5

SUBMISSION_GUARD_MS: int = 150
FALLBACK_RESPONSE_TIME_MS: int = 3_000

SCOREBOARD_POLL_MS: int = 1_000

BACKOFF_FLOOR_MS: int = 400
BACKOFF_CAP_MS: int = 2_000
BACKOFF_FACTOR: float = 1.35
REINFORCE_INTERVAL_MS: int = 5_000
DEGRADED_MODE_TIMEOUT_MS: int = 30_000
STATUS_CHECK_EVERY_TICKS: int = 3
