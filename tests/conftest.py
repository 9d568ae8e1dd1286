"""Shared fixtures for echohook tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from echohook.events import request_to_dict
from echohook.types import CapturedRequestEvent

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def ts():
    """ts(n) -> T0 + n seconds."""
    def _ts(seconds: float) -> datetime:
        return T0 + timedelta(seconds=seconds)
    return _ts


@pytest.fixture
def make_event(ts):
    """Build a CapturedRequestEvent with sensible defaults."""
    def _make(request_id: str, seconds: float = 0, **overrides) -> CapturedRequestEvent:
        fields = {
            "request_id": request_id,
            "method": "POST",
            "path": "/i/sess-1",
            "timestamp": ts(seconds),
            "query_params": {},
            "headers": {"Content-Type": "application/json"},
            "body": '{"ok": true}',
            "source_address": "203.0.113.7",
            "user_agent": "curl/8.4.0",
            "content_length": 12,
        }
        fields.update(overrides)
        return CapturedRequestEvent(**fields)
    return _make


def sse_frame(event: str, data: str) -> bytes:
    return f"event: {event}\ndata: {data}\n\n".encode()


def request_frame(event: CapturedRequestEvent) -> bytes:
    return sse_frame("request", json.dumps(request_to_dict(event)))


def ping_frame(when: str = "2024-05-01T12:00:30Z") -> bytes:
    return sse_frame("ping", json.dumps({"timestamp": when}))
