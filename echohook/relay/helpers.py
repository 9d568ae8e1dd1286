"""Pure helpers and the disconnect-aware response class for the relay."""

from __future__ import annotations

import logging
from functools import partial

import anyio
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

logger = logging.getLogger(__name__)


def sse_headers(origin: str | None) -> dict[str, str]:
    """Response headers for a relayed feed.

    ``X-Accel-Buffering: no`` turns off nginx response buffering and
    ``no-transform`` keeps intermediaries from recompressing chunks.
    """
    return {
        "Cache-Control": "no-cache, no-transform",
        "X-Accel-Buffering": "no",
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Credentials": "true",
    }


class RelayStreamingResponse(StreamingResponse):
    """StreamingResponse that stops reading its body the moment the client leaves.

    The body stream and a disconnect listener race in one task group; the
    first to finish cancels the other. A relayed feed can sit idle for a
    whole heartbeat interval, so disconnects are not left to be noticed on
    the next failed send. The body iterator's ``aclose()`` always runs.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            async with anyio.create_task_group() as task_group:

                async def run_until_first_complete(func) -> None:
                    await func()
                    task_group.cancel_scope.cancel()

                task_group.start_soon(run_until_first_complete, partial(self._stream, send))
                await run_until_first_complete(partial(self.listen_for_disconnect, receive))
        finally:
            closer = getattr(self.body_iterator, "aclose", None)
            if closer is not None:
                await closer()

        if self.background is not None:
            await self.background()

    async def _stream(self, send: Send) -> None:
        try:
            await self.stream_response(send)
        except OSError:
            logger.debug("Client went away mid-send")
