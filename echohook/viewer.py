"""One session view: historical batch plus live feed, merged into a store."""

from __future__ import annotations

import asyncio
import logging

import httpx

from .client import OriginClient
from .config import (
    ORIGIN_FEED_PATH,
    ORIGIN_REQUESTS_PATH,
    RELAY_FEED_PATH,
    RELAY_REQUESTS_PATH,
    ConfigResolver,
)
from .consumer import EventStreamConsumer, Sleep, StateListener
from .errors import TransportError, UpstreamStatusError
from .reconnect import ReconnectionPolicy
from .store import InsertListener, RequestStore
from .transport import TransportFactory, httpx_transport_factory

logger = logging.getLogger(__name__)


class SessionViewer:
    """Wires resolver, history fetch, consumer and store for one session.

    ``start()`` subscribes to the live feed and launches the historical
    fetch alongside it; the store merges both by ``request_id``. With
    ``via_relay`` the resolver is expected to point at an echohook relay
    rather than the origin.
    """

    def __init__(
        self,
        session_id: str,
        resolver: ConfigResolver,
        client: httpx.AsyncClient,
        *,
        policy: ReconnectionPolicy | None = None,
        via_relay: bool = False,
        history_limit: int = 100,
        on_insert: InsertListener | None = None,
        on_state_change: StateListener | None = None,
        transport_factory: TransportFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.session_id = session_id
        self.store = RequestStore(on_insert=on_insert)
        self.history_limit = history_limit
        self.error: str | None = None
        self.total_count: int | None = None
        self._origin = OriginClient(
            resolver,
            client,
            requests_path=RELAY_REQUESTS_PATH if via_relay else ORIGIN_REQUESTS_PATH,
        )
        self.consumer = EventStreamConsumer(
            self.store,
            resolver,
            transport_factory or httpx_transport_factory(client),
            policy=policy,
            feed_path=RELAY_FEED_PATH if via_relay else ORIGIN_FEED_PATH,
            on_state_change=on_state_change,
            sleep=sleep,
        )
        self._history_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Subscribe, then fetch history concurrently. ConfigurationError propagates."""
        await self.consumer.subscribe(self.session_id)
        self._history_task = asyncio.create_task(
            self._load_history(), name=f"echohook-history-{self.session_id}",
        )

    async def _load_history(self) -> None:
        try:
            page = await self._origin.fetch_requests(self.session_id, limit=self.history_limit)
        except UpstreamStatusError as exc:
            if exc.status_code == 404:
                self.error = "Session not found or expired"
            else:
                self.error = f"Failed to load requests: {exc.message}"
            logger.error("History for session %s: %s", self.session_id, self.error)
            return
        except TransportError as exc:
            self.error = "Failed to load requests"
            logger.error("History for session %s: %s", self.session_id, exc)
            return
        self.total_count = page.total_count
        self.store.load_historical(page.requests)

    async def wait_history(self) -> None:
        if self._history_task is not None:
            await asyncio.wait([self._history_task])

    async def wait(self) -> None:
        """Block until the live feed ends; raises ConnectionExhausted on budget exhaustion."""
        await self.consumer.wait()

    async def stop(self) -> None:
        task, self._history_task = self._history_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.consumer.unsubscribe()
