"""One-shot calls against the origin: session creation and history."""

from __future__ import annotations

import logging

import httpx

from .config import (
    ORIGIN_CREATE_PATH,
    ORIGIN_INGEST_PATH,
    ORIGIN_REQUESTS_PATH,
    ConfigResolver,
    build_url,
    clamp_history_limit,
    resolve_session_url,
)
from .errors import MalformedMessage, TransportError, UpstreamStatusError
from .events import page_from_dict
from .types import HistoricalPage, SessionInfo

logger = logging.getLogger(__name__)

TEST_PAYLOAD = '{"name": "John", "email": "john@example.com"}'


class OriginClient:
    """Session creation, history fetch and test deliveries against the origin.

    Shares the process-wide resolver and httpx client. ``requests_path``
    lets the same client talk to a relay instead of the origin.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        client: httpx.AsyncClient,
        *,
        requests_path: str = ORIGIN_REQUESTS_PATH,
    ) -> None:
        self._resolver = resolver
        self._client = client
        self._requests_path = requests_path

    async def fetch_requests(
        self,
        session_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> HistoricalPage:
        url = await resolve_session_url(self._resolver, self._requests_path, session_id)
        params = {"limit": clamp_history_limit(limit), "offset": max(offset, 0)}
        data = await self._get_json("GET", url, params=params)
        try:
            page = page_from_dict(data)
        except MalformedMessage as exc:
            raise UpstreamStatusError(502, f"Unexpected requests response: {exc}") from exc
        logger.info(
            "Fetched %d/%d historical requests for session %s",
            len(page.requests), page.total_count, session_id,
        )
        return page

    async def create_session(self) -> SessionInfo:
        base = await self._resolver.require()
        data = await self._get_json("POST", build_url(base, ORIGIN_CREATE_PATH))
        if not isinstance(data, dict) or not data.get("session_id"):
            raise UpstreamStatusError(502, "Origin returned no session_id")
        session_id = str(data["session_id"])
        return SessionInfo(
            session_id=session_id,
            ingestion_url=str(data.get("ingestion_url") or build_url(base, ORIGIN_INGEST_PATH, session_id)),
            stream_url=str(data.get("stream_url", "")),
            requests_url=str(data.get("requests_url", "")),
            expires_at=str(data.get("expires_at", "")),
        )

    async def send_test(self, session_id: str, *, body: str = TEST_PAYLOAD) -> int:
        """POST a sample JSON delivery to the session's ingestion endpoint.

        Returns the origin's status code.
        """
        url = await resolve_session_url(self._resolver, ORIGIN_INGEST_PATH, session_id)
        try:
            resp = await self._client.post(
                url, content=body, headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Test request to {url} failed: {exc}") from exc
        if not resp.is_success:
            raise UpstreamStatusError(resp.status_code, _error_message(resp))
        logger.info("Sent test request to session %s (%d)", session_id, resp.status_code)
        return resp.status_code

    async def _get_json(self, method: str, url: str, **kwargs) -> object:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        if not resp.is_success:
            raise UpstreamStatusError(resp.status_code, _error_message(resp))
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamStatusError(502, f"Origin returned invalid JSON from {url}") from exc


def _error_message(resp: httpx.Response) -> str:
    """Prefer the origin's ``{"message": ...}`` body, else the reason phrase."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            if isinstance(body.get(key), str):
                return body[key]
    return f"Backend error: {resp.reason_phrase}"
