"""Network configuration constants for the game REST client."""

from pathlib import Path

DEFAULT_BASE_URL: str = "http://127.0.0.1:8080"
API_PREFIX: str = "/mini-games"
REQUEST_TIMEOUT_SECONDS: float = 10.0
ROUND_PHASE_HEADER: str = "x-round-phase"
DEFAULT_CACHE_DIR: Path = Path.home() / ".party_sync" / "cache"
RESULTS_PATH: str = "/results/{session_id}"
REACTION_RESULTS_PATH: str = "/reaction/sessions/{session_id}/results"
