"""Classification of ``rounds/current`` responses into round lifecycle results.

``RoundPollResult`` is a closed union; consumers dispatch on the four
variants and nothing else.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Union

from pydantic import ValidationError

from party_sync.api.game_api import ApiResponse
from party_sync.api.payloads import RoundPayload
from party_sync.constants.network_constants import ROUND_PHASE_HEADER
from party_sync.core.models import Round, RoundPhase

logger = logging.getLogger(__name__)

_NO_ROUND_STATUSES = (204, 404)


@dataclass(slots=True, frozen=True)
class ActiveRound:
    round: Round


@dataclass(slots=True, frozen=True)
class WaitingNext:
    pass


@dataclass(slots=True, frozen=True)
class Finished:
    pass


@dataclass(slots=True, frozen=True)
class Transient:
    """Unclassifiable response; ``status`` is ``None`` for transport errors."""

    status: int | None
    reason: str = ""


RoundPollResult = Union[ActiveRound, WaitingNext, Finished, Transient]


def classify_round_response(response: ApiResponse) -> RoundPollResult:
    if response.status == 200:
        return _parse_active_round(response)

    if response.status in _NO_ROUND_STATUSES:
        phase = (response.header(ROUND_PHASE_HEADER) or "").strip().upper()
        if phase == RoundPhase.WAITING_NEXT.value:
            return WaitingNext()
        if phase == RoundPhase.FINISHED.value:
            return Finished()
        # A bare 204 is the server's way of saying "between rounds".
        if not phase and response.status == 204:
            return WaitingNext()
        return Transient(response.status, f"no round, phase header {phase or 'missing'}")

    return Transient(response.status, "unexpected status")


def _parse_active_round(response: ApiResponse) -> RoundPollResult:
    if not response.body:
        return Transient(200, "empty round payload")
    try:
        payload = RoundPayload.model_validate(response.body)
    except ValidationError as exc:
        logger.warning("Discarding malformed round payload: %s", exc.errors()[:3])
        return Transient(200, "malformed round payload")
    return ActiveRound(payload.to_round())
