"""Application entry point for the headless PartySync client."""

from __future__ import annotations

import argparse
import asyncio
import random
import sys
from pathlib import Path

from party_sync.api.game_api import GameApiClient
from party_sync.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION
from party_sync.constants.network_constants import (
    API_PREFIX,
    DEFAULT_BASE_URL,
    DEFAULT_CACHE_DIR,
    REACTION_RESULTS_PATH,
    RESULTS_PATH,
)
from party_sync.core.errors import PartySyncError
from party_sync.core.models import EngineSnapshot, EngineStage, FinalStandings, GameType
from party_sync.core.response_time_cache import ResponseTimeCache
from party_sync.core.services.round_sync_engine import RoundSyncEngine
from party_sync.core.services.submission_coordinator import SubmissionOutcome
from party_sync.core.sync_config import SyncConfig
from party_sync.utils.logging_config import configure_logging

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_DEGRADED = 2


class AutoAnswerer:
    """Answers every new round once, using the configured strategy."""

    def __init__(self, engine: RoundSyncEngine, strategy: str, rng: random.Random | None = None) -> None:
        self._engine = engine
        self._strategy = strategy
        self._rng = rng or random.Random()
        self._answered_round_ids: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, snapshot: EngineSnapshot) -> None:
        round_ = snapshot.round
        if self._strategy == "none" or snapshot.stage is not EngineStage.ACTIVE or round_ is None:
            return
        if round_.id in self._answered_round_ids or snapshot.submission.has_submitted:
            return
        if not round_.options:
            return
        self._answered_round_ids.add(round_.id)
        option = round_.options[0] if self._strategy == "first" else self._rng.choice(round_.options)
        task = asyncio.get_running_loop().create_task(self._answer(round_.id, option.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _answer(self, round_id: str, option_id: str) -> None:
        result = await self._engine.submit(option_id)
        if result.outcome is SubmissionOutcome.TRANSIENT_FAILURE:
            # Retried on the next snapshot.
            self._answered_round_ids.discard(round_id)


def _parse_sync_option(text: str) -> tuple[str, float]:
    name, separator, value = text.partition("=")
    if not separator:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {text!r}")
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{name} needs a numeric value") from exc
    return name.strip(), int(number) if number.is_integer() else number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="party-sync",
        description=f"{APP_NAME} - headless party-game client",
        epilog=APP_ABOUT_TEXT,
    )
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help=f"Game server URL (default: {DEFAULT_BASE_URL})")
    parser.add_argument("--api-prefix", default=API_PREFIX, help=f"REST path prefix (default: {API_PREFIX})")
    parser.add_argument("--session", required=True, help="Session id to join")
    parser.add_argument("--user", required=True, help="Player uid")
    parser.add_argument("--token", default=None, help="Bearer token sent with every request")
    parser.add_argument(
        "--game",
        choices=[game.value.lower() for game in GameType],
        default=GameType.QUIZ.value.lower(),
        help="Mini-game type, decides ranking direction (default: quiz)",
    )
    parser.add_argument("--host", action="store_true", help="Act as host and reinforce the session finish")
    parser.add_argument(
        "--answer",
        choices=["first", "random", "none"],
        default="first",
        help="How to answer each round automatically (default: first)",
    )
    parser.add_argument("--cache-dir", type=Path, default=DEFAULT_CACHE_DIR, help="Response time cache directory")
    parser.add_argument(
        "--sync-option",
        action="append",
        type=_parse_sync_option,
        default=[],
        metavar="NAME=VALUE",
        help="Override a sync option, e.g. activePollMs=500 (repeatable)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging verbosity (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    return parser


def format_standings(standings: FinalStandings) -> str:
    lines = []
    if standings.degraded:
        lines.append(f"!! {standings.message}")
    for entry in standings.entries:
        rank = "DNF" if entry.dnf else f"#{entry.rank}"
        score = "-" if entry.score is None else f"{entry.score:g}"
        lines.append(f"{rank:>4}  {entry.label:<24} {score}")
    if standings.winner_uid:
        lines.append(f"Winner: {standings.winner_uid}")
    return "\n".join(lines)


async def run_session(args: argparse.Namespace, config: SyncConfig) -> int:
    logger = configure_logging(args.log_level)
    cache = ResponseTimeCache(args.session, args.cache_dir)

    game_type = GameType(args.game.upper())
    results_path = REACTION_RESULTS_PATH if game_type is GameType.REACTION else RESULTS_PATH

    async with GameApiClient(
        args.base_url, api_prefix=args.api_prefix, results_path=results_path, auth_token=args.token
    ) as api:
        engine = RoundSyncEngine(
            api,
            args.session,
            args.user,
            game_type,
            is_host=args.host,
            config=config,
            response_cache=cache,
        )
        engine.subscribe(AutoAnswerer(engine, args.answer))
        engine.start()
        try:
            standings = await engine.wait_until_done()
        except PartySyncError as exc:
            logger.error("Session aborted: %s", exc)
            return EXIT_ABORTED
        finally:
            engine.stop()

    print(format_standings(standings))
    return EXIT_DEGRADED if standings.degraded else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, play the session and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = SyncConfig.from_options(dict(args.sync_option))
    except ValueError as exc:
        parser.error(str(exc))
    try:
        return asyncio.run(run_session(args, config))
    except KeyboardInterrupt:
        return EXIT_ABORTED


if __name__ == "__main__":
    sys.exit(main())
