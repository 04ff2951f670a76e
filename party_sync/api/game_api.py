"""Async client for the mini-game REST API.

Every method returns an :class:`ApiResponse` for any HTTP status; deciding
what a status means is left to the services. Only requests that never got a
response raise, as :class:`GameApiTransportError`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
from typing import Any

import httpx

from party_sync.api.payloads import AnswerPayload
from party_sync.constants.about import USER_AGENT
from party_sync.constants.network_constants import (
    API_PREFIX,
    DEFAULT_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
    RESULTS_PATH,
)
from party_sync.core.errors import GameApiTransportError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ApiResponse:
    """Status, decoded JSON body (or ``None``) and lower-cased headers."""

    status: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class GameApiClient:
    """Thin wrapper over ``httpx.AsyncClient`` for the endpoints the engine consumes."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        api_prefix: str = API_PREFIX,
        results_path: str = RESULTS_PATH,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        auth_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self._results_path = results_path
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._client.headers.update(headers)

    async def __aenter__(self) -> "GameApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # --- Round lifecycle ---

    async def fetch_current_round(self, session_id: str) -> ApiResponse:
        return await self._request("GET", f"/sessions/{session_id}/rounds/current")

    async def submit_answer(
        self,
        session_id: str,
        round_id: str,
        option_id: str,
        response_time_ms: int,
    ) -> ApiResponse:
        payload = AnswerPayload(option_id=option_id, response_time_ms=response_time_ms)
        return await self._request(
            "POST",
            f"/sessions/{session_id}/rounds/{round_id}/answers",
            json=payload.model_dump(by_alias=True),
        )

    # --- Scores and results ---

    async def fetch_scores(self, session_id: str) -> ApiResponse:
        return await self._request("GET", f"/sessions/{session_id}/scores")

    async def fetch_results(self, session_id: str) -> ApiResponse:
        return await self._request("GET", self._results_path.format(session_id=session_id))

    # --- Session ---

    async def fetch_session(self, session_id: str) -> ApiResponse:
        return await self._request("GET", f"/sessions/{session_id}")

    async def finish_session(self, session_id: str) -> ApiResponse:
        return await self._request("POST", f"/sessions/{session_id}/finish", json={})

    async def _request(self, method: str, path: str, json: Any = None) -> ApiResponse:
        url = f"{self._prefix}{path}"
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.RequestError as exc:
            logger.debug("%s %s failed: %s", method, url, exc)
            raise GameApiTransportError(f"{method} {url} failed: {exc}") from exc

        logger.debug("%s %s -> %d", method, url, response.status_code)
        return ApiResponse(
            status=response.status_code,
            body=_decode_body(response),
            headers={key.lower(): value for key, value in response.headers.items()},
        )


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
