"""Exception hierarchy shared by the consumer, relay and origin client."""

from __future__ import annotations


class EchoHookError(Exception):
    """Base class for all echohook errors."""


class ConfigurationError(EchoHookError):
    """No usable feed endpoint or session id. Terminal, never retried."""


class ServiceUnavailable(ConfigurationError):
    """No origin address is configured."""

    status_code = 503

    def __init__(self, message: str = "Backend API URL not configured") -> None:
        super().__init__(message)
        self.message = message


class TransportError(EchoHookError):
    """Connection refused, reset or timed out. Transient."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConnectionExhausted(EchoHookError):
    """The reconnect budget ran out; the viewer must re-subscribe."""

    def __init__(self, session_id: str, attempts: int) -> None:
        self.session_id = session_id
        self.attempts = attempts
        super().__init__(
            f"Failed to maintain event stream for session {session_id} "
            f"after {attempts} reconnect attempts"
        )


class MalformedMessage(EchoHookError):
    """An event payload could not be decoded."""


class UpstreamStatusError(EchoHookError):
    """The upstream answered with a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
