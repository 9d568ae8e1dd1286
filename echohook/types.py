"""All dataclasses, Protocols, and type aliases for echohook."""

from __future__ import annotations

import enum
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Captured requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CapturedRequestEvent:
    """One inbound webhook delivery as recorded by the origin."""
    request_id: str
    method: str
    path: str
    timestamp: datetime  # timezone-aware, ordering source of truth
    query_params: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)  # case as received
    body: str | None = None
    source_address: str = ""  # "ip_address" on the wire
    user_agent: str = ""
    content_length: int = 0


@dataclass
class HistoricalPage:
    """Point-in-time batch returned by the origin's requests endpoint."""
    total_count: int
    requests: list[CapturedRequestEvent] = field(default_factory=list)
    session_id: str = ""


@dataclass
class SessionInfo:
    """Result of creating a capture session on the origin."""
    session_id: str
    ingestion_url: str = ""
    stream_url: str = ""
    requests_url: str = ""
    expires_at: str = ""


# ---------------------------------------------------------------------------
# Feed messages
# ---------------------------------------------------------------------------

class MessageKind(enum.Enum):
    REQUEST = "request"
    PING = "ping"


@dataclass(frozen=True)
class StreamMessage:
    """A named feed event; ``data`` is the raw (JSON) payload text."""
    kind: MessageKind
    data: str
    event_id: str | None = None


@dataclass(frozen=True)
class SseEvent:
    """A dispatched text/event-stream event, any kind."""
    event: str
    data: str
    event_id: str | None = None


# ---------------------------------------------------------------------------
# Connection state
# ---------------------------------------------------------------------------

class ConnectionPhase(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionState:
    phase: ConnectionPhase
    attempt: int = 0  # backoff index of the pending retry (RECONNECTING only)
    next_delay: float | None = None

    @classmethod
    def connecting(cls) -> ConnectionState:
        return cls(ConnectionPhase.CONNECTING)

    @classmethod
    def open(cls) -> ConnectionState:
        return cls(ConnectionPhase.OPEN)

    @classmethod
    def reconnecting(cls, attempt: int, next_delay: float) -> ConnectionState:
        return cls(ConnectionPhase.RECONNECTING, attempt=attempt, next_delay=next_delay)

    @classmethod
    def failed(cls, attempt: int) -> ConnectionState:
        return cls(ConnectionPhase.FAILED, attempt=attempt)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class EventTransport(Protocol):
    """One streaming connection to a named-event feed.

    ``open()`` returns once the connection is established (or raises
    ``TransportError``). ``messages()`` yields request/ping messages in the
    order received and returns when the feed ends. ``close()`` is idempotent.
    """

    async def open(self) -> None: ...

    def messages(self) -> AsyncIterator[StreamMessage]: ...

    async def close(self) -> None: ...


@runtime_checkable
class ConfigStore(Protocol):
    """Dynamic key/value lookup consulted before environment fallbacks."""

    async def get(self, key: str) -> str | None: ...

    async def aclose(self) -> None: ...


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_ENV_VARS = ["NEXT_PUBLIC_API_URL", "API_URL", "BACKEND_URL"]


@dataclass
class OriginConfig:
    """Where the origin base address comes from."""
    api_url: str | None = None  # static fallback after store + env
    redis_url: str | None = None
    redis_key: str = "config:api_url"
    redis_db: int = 1
    env_vars: list[str] = field(default_factory=lambda: list(DEFAULT_ENV_VARS))


@dataclass
class RelayConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    connect_timeout: float = 10.0


@dataclass
class ReconnectConfig:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10


@dataclass
class HistoryConfig:
    limit: int = 100


@dataclass
class EchoHookConfig:
    origin: OriginConfig = field(default_factory=OriginConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
