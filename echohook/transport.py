"""EventTransport over a streaming httpx GET."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable

import httpx

from .errors import TransportError
from .events import SseDecoder, to_stream_message
from .types import EventTransport, StreamMessage

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], EventTransport]

_FEED_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
    "Accept-Encoding": "identity",
}


class HttpxEventTransport:
    """One text/event-stream connection.

    ``open()`` sends the request and waits for response headers; anything
    but a 2xx is a ``TransportError`` carrying the status. ``messages()``
    parses the body incrementally and yields only ``request``/``ping``
    events. The feed ending, cleanly or not, ends the iterator; read errors
    surface as ``TransportError``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        *,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self.url = url
        self._headers = {**_FEED_HEADERS, **(headers or {})}
        self._response: httpx.Response | None = None

    async def open(self) -> None:
        request = self._client.build_request("GET", self.url, headers=self._headers)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"Could not connect to {self.url}: {exc}") from exc
        if not response.is_success:
            await response.aclose()
            raise TransportError(
                f"Feed {self.url} answered {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        self._response = response

    async def messages(self) -> AsyncIterator[StreamMessage]:
        if self._response is None:
            raise TransportError("transport is not open")
        decoder = SseDecoder()
        try:
            async for chunk in self._response.aiter_bytes():
                for event in decoder.feed(chunk):
                    message = to_stream_message(event)
                    if message is not None:
                        yield message
        except httpx.HTTPError as exc:
            raise TransportError(f"Feed {self.url} dropped: {exc}") from exc

    async def close(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()


def httpx_transport_factory(
    client: httpx.AsyncClient,
    *,
    headers: dict[str, str] | None = None,
) -> TransportFactory:
    """Bind a shared client so the consumer can open one transport per attempt."""

    def factory(url: str) -> EventTransport:
        return HttpxEventTransport(client, url, headers=headers)

    return factory
