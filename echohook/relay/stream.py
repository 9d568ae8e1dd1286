"""StreamRelay: one upstream feed connection per downstream subscriber."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import anyio
import httpx

from ..config import ORIGIN_FEED_PATH, ConfigResolver, resolve_session_url
from ..errors import TransportError, UpstreamStatusError

logger = logging.getLogger(__name__)


class RelayFeed:
    """An open upstream feed, forwarded chunk-by-chunk.

    Iterating yields the upstream body exactly as it arrives: no
    coalescing, splitting or re-encoding, so SSE framing survives. The
    upstream response is closed when iteration ends, is cancelled, or
    ``aclose()`` is called, whichever comes first.
    """

    def __init__(self, response: httpx.Response, session_id: str) -> None:
        self._response = response
        self.session_id = session_id
        self.chunks_forwarded = 0
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                self.chunks_forwarded += 1
                yield chunk
        except httpx.HTTPError as exc:
            logger.warning("Upstream feed for session %s dropped: %s", self.session_id, exc)
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        with anyio.CancelScope(shield=True):
            await self._response.aclose()
        logger.info(
            "Relay for session %s closed after %d chunks",
            self.session_id, self.chunks_forwarded,
        )


class StreamRelay:
    """Stateless forwarder from the origin's feed to one subscriber.

    Exactly one upstream attempt per ``open()``; reconnecting is the
    downstream consumer's job.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        client: httpx.AsyncClient,
        *,
        feed_path: str = ORIGIN_FEED_PATH,
    ) -> None:
        self._resolver = resolver
        self._client = client
        self._feed_path = feed_path

    async def open(self, session_id: str, *, origin: str = "") -> RelayFeed:
        """Connect upstream for *session_id*.

        Raises ServiceUnavailable before touching the network when no origin
        is configured, UpstreamStatusError with the upstream's own status on
        a non-2xx answer, and TransportError when the origin is unreachable.
        """
        url = await resolve_session_url(self._resolver, self._feed_path, session_id)
        request = self._client.build_request(
            "GET",
            url,
            headers={
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
                "Accept-Encoding": "identity",
                "Origin": origin,
            },
        )
        try:
            upstream = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to establish SSE connection: {exc}") from exc

        if not upstream.is_success:
            await upstream.aclose()
            logger.warning(
                "Upstream feed for session %s answered %d", session_id, upstream.status_code,
            )
            raise UpstreamStatusError(
                upstream.status_code, f"Backend error: {upstream.reason_phrase}",
            )

        logger.info("Relaying feed for session %s from %s", session_id, url)
        return RelayFeed(upstream, session_id)
