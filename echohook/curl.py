"""Render a captured request as a replayable curl command."""

from __future__ import annotations

from urllib.parse import urlencode

from .types import CapturedRequestEvent


def _shell_quote(value: str) -> str:
    return value.replace("'", "'\\''")


def build_curl(event: CapturedRequestEvent, base_url: str = "") -> str:
    """curl command replaying *event* against *base_url*.

    ``content-length`` is dropped (curl computes it) and the body is only
    sent for methods other than GET and HEAD.
    """
    method = event.method.upper()
    url = f"{base_url.rstrip('/')}{event.path}"
    query = urlencode([(k, v) for k, v in event.query_params.items() if k])
    if query:
        url += ("&" if "?" in url else "?") + query

    parts = [f"curl -X {method} '{_shell_quote(url)}'"]
    for key, value in event.headers.items():
        if key.lower() == "content-length":
            continue
        parts.append(f"-H '{key}: {_shell_quote(value)}'")

    if event.body and method not in ("GET", "HEAD"):
        parts.append(f"-d '{_shell_quote(event.body)}'")

    return " \\\n  ".join(parts)
