"""Normalization of server timestamps to epoch milliseconds."""

from __future__ import annotations

from datetime import datetime, timezone
import math

# Anything below this is taken to be epoch seconds rather than milliseconds.
_SECONDS_THRESHOLD = 1e12


def normalize_millis(value: object) -> int | None:
    """Return ``value`` as epoch milliseconds, or ``None`` when it is unusable.

    Accepts epoch seconds or milliseconds (numbers or numeric strings) and
    ISO-8601 strings. Naive ISO timestamps are taken to be UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_number(float(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _from_number(float(text))
        except ValueError:
            return _from_iso(text)
    return None


def _from_number(number: float) -> int | None:
    if not math.isfinite(number):
        return None
    if abs(number) < _SECONDS_THRESHOLD:
        return math.trunc(number * 1000)
    return math.trunc(number)


def _from_iso(text: str) -> int | None:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return math.trunc(parsed.timestamp() * 1000)
