"""Tests for the command-line entry point helpers."""

import pytest

from app_main import build_parser, format_standings, main
from party_sync.core.models import FinalStandings, ScoreEntry


def test_parser_defaults():
    args = build_parser().parse_args(["--session", "s1", "--user", "u1"])

    assert args.game == "quiz"
    assert args.answer == "first"
    assert not args.host
    assert args.sync_option == []
    assert args.base_url == "http://127.0.0.1:8080"


def test_sync_options_are_parsed():
    args = build_parser().parse_args(
        ["--session", "s1", "--user", "u1", "--sync-option", "activePollMs=500", "--sync-option", "backoffFactor=1.5"]
    )

    assert args.sync_option == [("activePollMs", 500), ("backoffFactor", 1.5)]


def test_bad_sync_option_is_a_usage_error(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--session", "s1", "--user", "u1", "--sync-option", "pollFaster=1"])

    assert excinfo.value.code == 2
    assert "pollFaster" in capsys.readouterr().err


def test_malformed_sync_option_is_rejected():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--session", "s1", "--user", "u1", "--sync-option", "activePollMs"])


def test_version_flag(capsys):
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--version"])

    assert "PartySync" in capsys.readouterr().out


def test_format_standings_marks_degraded_and_dnf():
    standings = FinalStandings(
        session_id="s1",
        entries=(
            ScoreEntry("user-1234", 42.0, rank=1, display_name="Ann"),
            ScoreEntry("user-9876", None, dnf=True),
        ),
        winner_uid="user-1234",
        degraded=True,
        message="Results generated from partial scores",
    )

    text = format_standings(standings)

    assert text.splitlines()[0] == "!! Results generated from partial scores"
    assert "  #1  Ann" in text
    assert " DNF  Player 9876" in text
    assert text.endswith("Winner: user-1234")

