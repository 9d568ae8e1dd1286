"""echohook: live webhook capture viewer with a resilient feed consumer and relay."""

__version__ = "0.1.0"

from .config import ConfigResolver, load_config
from .consumer import EventStreamConsumer
from .errors import (
    ConfigurationError,
    ConnectionExhausted,
    EchoHookError,
    MalformedMessage,
    ServiceUnavailable,
    TransportError,
    UpstreamStatusError,
)
from .reconnect import ReconnectionPolicy
from .store import RequestStore
from .types import (
    CapturedRequestEvent,
    ConnectionPhase,
    ConnectionState,
    EchoHookConfig,
    HistoricalPage,
    MessageKind,
    StreamMessage,
)
from .viewer import SessionViewer

__all__ = [
    "EventStreamConsumer",
    "ReconnectionPolicy",
    "RequestStore",
    "SessionViewer",
    "ConfigResolver",
    "load_config",
    "CapturedRequestEvent",
    "ConnectionPhase",
    "ConnectionState",
    "EchoHookConfig",
    "HistoricalPage",
    "MessageKind",
    "StreamMessage",
    "EchoHookError",
    "ConfigurationError",
    "ServiceUnavailable",
    "TransportError",
    "ConnectionExhausted",
    "MalformedMessage",
    "UpstreamStatusError",
]
