"""Resilient subscriber for a session's event feed."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .config import ORIGIN_FEED_PATH, ConfigResolver, resolve_session_url
from .errors import ConnectionExhausted, MalformedMessage, TransportError
from .events import decode_ping, decode_request
from .reconnect import ReconnectionPolicy
from .store import RequestStore
from .transport import TransportFactory
from .types import ConnectionPhase, ConnectionState, EventTransport, MessageKind, StreamMessage

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]
Sleep = Callable[[float], Awaitable[None]]


class EventStreamConsumer:
    """Keeps one live subscription feeding a RequestStore.

    State machine::

        subscribe ─► CONNECTING ─open─► OPEN
                         ▲                │ close / error
                         │ timer fires    ▼
                         └──────── RECONNECTING(attempt, delay)
                                          │ budget spent
                                          ▼
                                        FAILED

    The subscription runs as a single task that holds either the open
    transport or the pending retry sleep, never both. ``unsubscribe()``
    cancels that task, so no timer can fire afterwards. Only a freshly
    opened transport resets the attempt counter; pings do not.
    """

    def __init__(
        self,
        store: RequestStore,
        resolver: ConfigResolver,
        transport_factory: TransportFactory,
        *,
        policy: ReconnectionPolicy | None = None,
        feed_path: str = ORIGIN_FEED_PATH,
        on_state_change: StateListener | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._transport_factory = transport_factory
        self.policy = policy or ReconnectionPolicy()
        self._feed_path = feed_path
        self._on_state_change = on_state_change
        self._sleep = sleep

        self._session_id: str | None = None
        self._state: ConnectionState | None = None
        self._attempts = 0
        self._closed = False
        self._task: asyncio.Task | None = None
        self._transport: EventTransport | None = None
        self._exhausted: ConnectionExhausted | None = None

    @property
    def state(self) -> ConnectionState | None:
        """Current state; None before subscribe and after unsubscribe."""
        return self._state

    @property
    def attempts(self) -> int:
        """Reconnects scheduled since the last successful open."""
        return self._attempts

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def has_transport(self) -> bool:
        return self._transport is not None

    async def subscribe(self, session_id: str) -> None:
        """Start delivering *session_id*'s feed into the store.

        Raises ConfigurationError (no retry) if the session id is empty or
        no feed endpoint resolves. Transport problems never raise here;
        they drive the reconnect loop.
        """
        url = await resolve_session_url(self._resolver, self._feed_path, session_id)
        if self._task is not None:
            await self.unsubscribe()

        self._session_id = session_id
        self._closed = False
        self._attempts = 0
        self._exhausted = None
        self._set_state(ConnectionState.connecting())
        logger.info("Subscribing to session %s at %s", session_id, url)
        self._task = asyncio.create_task(self._run(url), name=f"echohook-feed-{session_id}")

    async def unsubscribe(self) -> None:
        """Cancel any retry timer, close any transport. Safe from any state."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        if self._state is not None:
            logger.info("Unsubscribed from session %s", self._session_id)
        self._state = None

    async def wait(self) -> None:
        """Block until the subscription task ends.

        Raises ConnectionExhausted when it ended because the reconnect
        budget ran out.
        """
        task = self._task
        if task is not None:
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        if self._exhausted is not None:
            raise self._exhausted

    # -- subscription task ---------------------------------------------------

    async def _run(self, url: str) -> None:
        try:
            await self._connect_loop(url)
        except Exception:
            self._set_state(ConnectionState.failed(self._attempts))
            logger.exception("Feed task for session %s crashed", self._session_id)
            raise

    async def _connect_loop(self, url: str) -> None:
        while True:
            transport = self._transport_factory(url)
            self._transport = transport
            try:
                await transport.open()
                self._attempts = 0
                self._set_state(ConnectionState.open())
                logger.info("Feed open for session %s", self._session_id)
                async for message in transport.messages():
                    self._handle(message)
                logger.warning("Feed for session %s closed by origin", self._session_id)
            except TransportError as exc:
                logger.warning("Feed for session %s failed: %s", self._session_id, exc)
            finally:
                self._transport = None
                await transport.close()

            delay = self._next_retry()
            if delay is None:
                return
            await self._sleep(delay)
            self._set_state(ConnectionState.connecting())

    def _next_retry(self) -> float | None:
        attempt = self._attempts
        if not self.policy.should_retry(attempt):
            self._set_state(ConnectionState.failed(attempt))
            self._exhausted = ConnectionExhausted(self._session_id or "", attempt)
            logger.error("%s", self._exhausted)
            return None
        delay = self.policy.next_delay(attempt)
        self._attempts = attempt + 1
        self._set_state(ConnectionState.reconnecting(attempt, delay))
        logger.info(
            "Reconnecting session %s in %.0fs (attempt %d/%d)",
            self._session_id, delay, attempt + 1, self.policy.max_attempts,
        )
        return delay

    def _handle(self, message: StreamMessage) -> None:
        if message.kind is MessageKind.PING:
            logger.debug("Ping on session %s at %s", self._session_id, decode_ping(message.data))
            if self._state is None or self._state.phase is not ConnectionPhase.OPEN:
                self._set_state(ConnectionState.open())
            return

        try:
            event = decode_request(message.data)
        except MalformedMessage as exc:
            logger.warning("Dropping malformed request event on session %s: %s", self._session_id, exc)
            return
        try:
            self._store.append_live(event)
        except Exception:
            # the record is stored; only the listener failed
            logger.exception("Insert listener failed for request %s", event.request_id)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)
