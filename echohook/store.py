"""Newest-first, deduplicated view of a session's captured requests."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator

from .types import CapturedRequestEvent

logger = logging.getLogger(__name__)

InsertListener = Callable[[CapturedRequestEvent, str], None]


def matches_filter(event: CapturedRequestEvent, query: str) -> bool:
    """Case-insensitive substring match on method, path, user agent and headers.

    An empty query matches everything.
    """
    if not query:
        return True
    needle = query.lower()
    if needle in event.method.lower() or needle in event.path.lower():
        return True
    if needle in event.user_agent.lower():
        return True
    return any(
        needle in key.lower() or needle in value.lower()
        for key, value in event.headers.items()
    )


class RequestStore:
    """Merges one historical batch with the live append stream.

    Thread-safe: the historical fetch and live delivery may race, so every
    write happens under ``_lock``. Records are keyed by ``request_id`` and
    are immutable once stored (first seen wins).

    ``initial`` seeds the sequence as given (deduplicated, order kept).
    ``on_insert`` is called as ``(event, source)`` with source ``"live"`` or
    ``"historical"`` after each new record lands, outside the lock.
    """

    def __init__(
        self,
        initial: Iterable[CapturedRequestEvent] = (),
        *,
        on_insert: InsertListener | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._items: list[CapturedRequestEvent] = []
        self._ids: set[str] = set()
        self._on_insert = on_insert
        for event in initial:
            if event.request_id not in self._ids:
                self._ids.add(event.request_id)
                self._items.append(event)

    def append_live(self, event: CapturedRequestEvent) -> bool:
        """Prepend a live event. Returns False if its id is already stored."""
        with self._lock:
            if event.request_id in self._ids:
                logger.debug("Duplicate live request %s suppressed", event.request_id)
                return False
            self._ids.add(event.request_id)
            self._items.insert(0, event)
        self._notify(event, "live")
        return True

    def load_historical(self, batch: Iterable[CapturedRequestEvent]) -> int:
        """Merge a historical batch; returns how many records were new.

        Each new record goes in front of the first stored record with a
        strictly older timestamp. Existing records never move relative to
        each other, so live entries already ahead of the batch stay ahead.
        """
        inserted: list[CapturedRequestEvent] = []
        with self._lock:
            for event in batch:
                if event.request_id in self._ids:
                    continue
                self._ids.add(event.request_id)
                self._items.insert(self._position_for(event), event)
                inserted.append(event)
        for event in inserted:
            self._notify(event, "historical")
        if inserted:
            logger.info("Loaded %d historical requests (%d total)", len(inserted), len(self))
        return len(inserted)

    def _position_for(self, event: CapturedRequestEvent) -> int:
        for i, existing in enumerate(self._items):
            if existing.timestamp < event.timestamp:
                return i
        return len(self._items)

    def _notify(self, event: CapturedRequestEvent, source: str) -> None:
        if self._on_insert is not None:
            self._on_insert(event, source)

    # -- read side ---------------------------------------------------------

    def get(self, request_id: str) -> CapturedRequestEvent | None:
        with self._lock:
            for event in self._items:
                if event.request_id == request_id:
                    return event
        return None

    def snapshot(self) -> list[CapturedRequestEvent]:
        with self._lock:
            return list(self._items)

    def filter(self, query: str) -> list[CapturedRequestEvent]:
        """Stored records matching *query*, newest first."""
        return [e for e in self.snapshot() if matches_filter(e, query)]

    def request_ids(self) -> list[str]:
        with self._lock:
            return [e.request_id for e in self._items]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._ids.clear()

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[CapturedRequestEvent]:
        return iter(self.snapshot())
