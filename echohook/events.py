"""text/event-stream framing and captured-request payload codecs."""

from __future__ import annotations

import codecs
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from .errors import MalformedMessage
from .types import CapturedRequestEvent, HistoricalPage, MessageKind, SseEvent, StreamMessage

logger = logging.getLogger(__name__)

# chrono emits nanosecond precision; datetime only holds microseconds
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class SseDecoder:
    """Incremental text/event-stream parser.

    Feed raw byte chunks as they arrive; complete events are returned as soon
    as their terminating blank line has been seen. Handles ``\\r\\n``, ``\\n``
    and ``\\r`` line endings, including a ``\\r\\n`` split across chunks.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buf = ""
        self._event = ""
        self._data: list[str] = []
        self._last_id: str | None = None
        self._first_line = True
        self._skip_lf = False  # last chunk ended in \r; a leading \n completes that CRLF

    def feed(self, chunk: bytes) -> list[SseEvent]:
        self._buf += self._decoder.decode(chunk)
        if self._skip_lf and self._buf:
            self._skip_lf = False
            if self._buf[0] == "\n":
                self._buf = self._buf[1:]
        events: list[SseEvent] = []
        while True:
            idx_n = self._buf.find("\n")
            idx_r = self._buf.find("\r")
            if idx_n == -1 and idx_r == -1:
                break
            if idx_r != -1 and (idx_n == -1 or idx_r < idx_n):
                line = self._buf[:idx_r]
                if idx_r == len(self._buf) - 1:
                    self._skip_lf = True
                    skip = 1
                else:
                    skip = 2 if self._buf[idx_r + 1] == "\n" else 1
                self._buf = self._buf[idx_r + skip:]
            else:
                line = self._buf[:idx_n]
                self._buf = self._buf[idx_n + 1:]
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> SseEvent | None:
        if self._first_line:
            self._first_line = False
            line = line.lstrip("\ufeff")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id" and "\0" not in value:
            self._last_id = value
        return None

    def _dispatch(self) -> SseEvent | None:
        event, data = self._event, self._data
        self._event = ""
        self._data = []
        if not data:
            return None
        return SseEvent(event=event or "message", data="\n".join(data), event_id=self._last_id)


def to_stream_message(event: SseEvent) -> StreamMessage | None:
    """Map an SSE event onto the feed's typed channel; other kinds are ignored."""
    try:
        kind = MessageKind(event.event)
    except ValueError:
        logger.debug("Ignoring feed event of kind %r", event.event)
        return None
    return StreamMessage(kind=kind, data=event.data, event_id=event.event_id)


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 instant into an aware UTC-normalized datetime."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r"\1", text)
        try:
            ts = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedMessage(f"Invalid timestamp: {value!r}") from exc
    else:
        raise MalformedMessage(f"Invalid timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _str_map(raw: Any, name: str) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise MalformedMessage(f"{name} must be an object")
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}


def _require_str(raw: dict, key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str):
        raise MalformedMessage(f"{key} must be a string")
    return value


def request_from_dict(raw: Any) -> CapturedRequestEvent:
    """Build a CapturedRequestEvent from its wire dict, or raise MalformedMessage."""
    if not isinstance(raw, dict):
        raise MalformedMessage("request payload must be a JSON object")
    request_id = _require_str(raw, "request_id")
    if not request_id:
        raise MalformedMessage("request_id must not be empty")

    content_length = raw.get("content_length", 0)
    if isinstance(content_length, bool) or not isinstance(content_length, int) or content_length < 0:
        raise MalformedMessage("content_length must be a non-negative integer")

    body = raw.get("body")
    if body is not None and not isinstance(body, str):
        raise MalformedMessage("body must be a string")

    return CapturedRequestEvent(
        request_id=request_id,
        method=_require_str(raw, "method"),
        path=_require_str(raw, "path"),
        timestamp=parse_timestamp(raw.get("timestamp")),
        query_params=_str_map(raw.get("query_params"), "query_params"),
        headers=_str_map(raw.get("headers"), "headers"),
        body=body,
        source_address=str(raw.get("ip_address") or ""),
        user_agent=str(raw.get("user_agent") or ""),
        content_length=content_length,
    )


def decode_request(data: str) -> CapturedRequestEvent:
    """Decode the ``data:`` text of a ``request`` event."""
    try:
        raw = json.loads(data)
    except (ValueError, TypeError) as exc:
        raise MalformedMessage(f"request payload is not JSON: {exc}") from exc
    return request_from_dict(raw)


def decode_ping(data: str) -> datetime | None:
    """Return the ping's timestamp, or None when it carries none we can read."""
    try:
        raw = json.loads(data)
        return parse_timestamp(raw.get("timestamp"))
    except (ValueError, TypeError, AttributeError, MalformedMessage):
        return None


def request_to_dict(event: CapturedRequestEvent) -> dict:
    """Wire representation, the inverse of ``request_from_dict``."""
    return {
        "request_id": event.request_id,
        "method": event.method,
        "path": event.path,
        "query_params": dict(event.query_params),
        "headers": dict(event.headers),
        "body": event.body,
        "ip_address": event.source_address,
        "user_agent": event.user_agent,
        "timestamp": event.timestamp.isoformat(),
        "content_length": event.content_length,
    }


def page_from_dict(raw: Any) -> HistoricalPage:
    """Decode a requests-endpoint response. Malformed records are skipped."""
    if not isinstance(raw, dict):
        raise MalformedMessage("requests response must be a JSON object")
    records = raw.get("requests") or []
    if not isinstance(records, list):
        raise MalformedMessage("requests must be a list")

    requests: list[CapturedRequestEvent] = []
    for record in records:
        try:
            requests.append(request_from_dict(record))
        except MalformedMessage as exc:
            logger.warning("Skipping malformed historical record: %s", exc)

    total = raw.get("total_requests", raw.get("totalCount"))
    if isinstance(total, bool) or not isinstance(total, int):
        total = len(requests)
    return HistoricalPage(
        total_count=total,
        requests=requests,
        session_id=str(raw.get("session_id") or ""),
    )
