"""Tests for SSE framing and captured-request decoding."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from echohook.errors import MalformedMessage
from echohook.events import (
    SseDecoder,
    decode_ping,
    decode_request,
    page_from_dict,
    parse_timestamp,
    request_to_dict,
    to_stream_message,
)
from echohook.types import MessageKind, SseEvent


def _wire(**overrides) -> dict:
    raw = {
        "request_id": "req-1",
        "method": "POST",
        "path": "/i/sess-1",
        "query_params": {"a": "1"},
        "headers": {"Content-Type": "application/json"},
        "body": "{}",
        "ip_address": "198.51.100.4",
        "user_agent": "GitHub-Hookshot/abc",
        "timestamp": "2024-05-01T12:00:00.123456789Z",
        "content_length": 2,
    }
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# SseDecoder
# ---------------------------------------------------------------------------


class TestSseDecoder:
    def test_single_event(self):
        events = SseDecoder().feed(b"event: request\ndata: {}\n\n")
        assert events == [SseEvent(event="request", data="{}")]

    def test_split_across_chunks(self):
        decoder = SseDecoder()
        assert decoder.feed(b"event: pi") == []
        assert decoder.feed(b"ng\ndata: {\"timestamp\"") == []
        events = decoder.feed(b": 1}\n\n")
        assert events == [SseEvent(event="ping", data='{"timestamp": 1}')]

    def test_crlf_split_between_chunks(self):
        decoder = SseDecoder()
        assert decoder.feed(b"event: ping\r") == []
        assert decoder.feed(b"\ndata: x\r\n\r\n") == [SseEvent(event="ping", data="x")]

    def test_bare_cr_line_endings(self):
        events = SseDecoder().feed(b"event: ping\rdata: x\r\r ")
        assert events == [SseEvent(event="ping", data="x")]

    def test_trailing_bare_cr_dispatches(self):
        events = SseDecoder().feed(b"event: ping\rdata: {}\r\r")
        assert events == [SseEvent(event="ping", data="{}")]

    def test_lf_after_trailing_cr_not_a_blank_line(self):
        decoder = SseDecoder()
        assert decoder.feed(b"event: ping\r") == []
        assert decoder.feed(b"\n") == []
        assert decoder.feed(b"data: x\r\n\r\n") == [SseEvent(event="ping", data="x")]

    def test_multiline_data_joined(self):
        events = SseDecoder().feed(b"data: one\ndata: two\n\n")
        assert events == [SseEvent(event="message", data="one\ntwo")]

    def test_comments_and_empty_blocks_ignored(self):
        events = SseDecoder().feed(b": keepalive\n\nevent: ping\n\n")
        assert events == []

    def test_multibyte_utf8_split(self):
        payload = "data: café\n\n".encode()
        decoder = SseDecoder()
        cut = payload.index(b"\xc3") + 1
        assert decoder.feed(payload[:cut]) == []
        assert decoder.feed(payload[cut:])[0].data == "café"

    def test_event_id_carried(self):
        events = SseDecoder().feed(b"id: 7\nevent: request\ndata: {}\n\n")
        assert events[0].event_id == "7"

    def test_leading_bom_stripped(self):
        events = SseDecoder().feed("\ufeffevent: ping\ndata: x\n\n".encode())
        assert events[0].event == "ping"


class TestToStreamMessage:
    def test_known_kinds(self):
        assert to_stream_message(SseEvent("request", "{}")).kind is MessageKind.REQUEST
        assert to_stream_message(SseEvent("ping", "{}")).kind is MessageKind.PING

    def test_unknown_kind_ignored(self):
        assert to_stream_message(SseEvent("message", "{}")) is None
        assert to_stream_message(SseEvent("error", "{}")) is None


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class TestParseTimestamp:
    def test_nanoseconds_truncated(self):
        ts = parse_timestamp("2024-05-01T12:00:00.123456789Z")
        assert ts == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_offset_normalized_to_utc(self):
        ts = parse_timestamp("2024-05-01T14:00:00+02:00")
        assert ts == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert ts.tzinfo is timezone.utc

    def test_naive_assumed_utc(self):
        assert parse_timestamp("2024-05-01T12:00:00").tzinfo is timezone.utc

    @pytest.mark.parametrize("bad", ["", "yesterday", None, 12345])
    def test_invalid(self, bad):
        with pytest.raises(MalformedMessage):
            parse_timestamp(bad)


class TestDecodeRequest:
    def test_full_record(self):
        event = decode_request(json.dumps(_wire()))
        assert event.request_id == "req-1"
        assert event.source_address == "198.51.100.4"
        assert event.query_params == {"a": "1"}
        assert event.headers == {"Content-Type": "application/json"}
        assert event.content_length == 2

    def test_optional_fields_default(self):
        raw = _wire()
        for key in ("query_params", "headers", "body", "ip_address", "user_agent", "content_length"):
            del raw[key]
        event = decode_request(json.dumps(raw))
        assert event.body is None
        assert event.headers == {}
        assert event.content_length == 0

    def test_not_json(self):
        with pytest.raises(MalformedMessage):
            decode_request("{not json")

    @pytest.mark.parametrize("overrides", [
        {"request_id": ""},
        {"request_id": 5},
        {"method": None},
        {"content_length": -1},
        {"content_length": True},
        {"headers": ["a"]},
        {"body": {"x": 1}},
        {"timestamp": "soon"},
    ])
    def test_invalid_fields(self, overrides):
        with pytest.raises(MalformedMessage):
            decode_request(json.dumps(_wire(**overrides)))

    def test_array_payload(self):
        with pytest.raises(MalformedMessage):
            decode_request("[]")

    def test_wire_keys_are_snake_case(self):
        event = decode_request(json.dumps(_wire()))
        out = request_to_dict(event)
        assert out["ip_address"] == "198.51.100.4"
        assert out["content_length"] == 2
        assert "source_address" not in out


class TestDecodePing:
    def test_timestamp(self):
        assert decode_ping('{"timestamp": "2024-05-01T12:00:00Z"}').year == 2024

    def test_unreadable(self):
        assert decode_ping("garbage") is None
        assert decode_ping("[]") is None
        assert decode_ping("{}") is None


class TestPageFromDict:
    def test_skips_malformed_records(self):
        page = page_from_dict({
            "session_id": "sess-1",
            "total_requests": 3,
            "requests": [_wire(), {"request_id": ""}, _wire(request_id="req-2")],
        })
        assert [r.request_id for r in page.requests] == ["req-1", "req-2"]
        assert page.total_count == 3
        assert page.session_id == "sess-1"

    def test_total_falls_back_to_length(self):
        assert page_from_dict({"requests": [_wire()]}).total_count == 1

    def test_empty(self):
        page = page_from_dict({"requests": None})
        assert page.requests == []
        assert page.total_count == 0

    def test_not_an_object(self):
        with pytest.raises(MalformedMessage):
            page_from_dict([])
