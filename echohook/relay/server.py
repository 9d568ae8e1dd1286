"""HTTP relay between viewers and the capture origin.

Streams a session's event feed through unchanged and passes the origin's
JSON endpoints through with their status codes intact.

Usage:
    echohook -c echohook.yaml relay --port 3000
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import (
    ORIGIN_CREATE_PATH,
    ORIGIN_REQUESTS_PATH,
    ConfigResolver,
    build_url,
    clamp_history_limit,
    load_config,
    resolve_session_url,
)
from ..errors import ConfigurationError, TransportError, UpstreamStatusError
from ..types import EchoHookConfig
from .helpers import RelayStreamingResponse, sse_headers
from .stream import StreamRelay

logger = logging.getLogger(__name__)


def create_app(
    config_path: str | None = None,
    *,
    config: EchoHookConfig | None = None,
    resolver: ConfigResolver | None = None,
    client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create the FastAPI relay application.

    Args:
        config_path: Path to an echohook config file (auto-discovered if None).
        config: Already-loaded config; takes precedence over config_path.
        resolver: Origin address resolver. Built from config (and closed on
            shutdown) if None.
        client: Shared outbound client. Created (and closed on shutdown) if None.
    """
    if config is None:
        config = load_config(config_path)
    owns_resolver = resolver is None
    if resolver is None:
        resolver = ConfigResolver.from_config(config)
    owns_client = client is None
    if client is None:
        # no read timeout: a healthy feed is silent between heartbeats
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=config.relay.connect_timeout),
        )

    relay = StreamRelay(resolver, client)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        yield
        if owns_client:
            await client.aclose()
        if owns_resolver:
            await resolver.aclose()

    app = FastAPI(title="echohook relay", lifespan=lifespan)
    app.state.resolver = resolver
    app.state.relay = relay

    @app.exception_handler(ConfigurationError)
    async def _configuration_error(request: Request, exc: ConfigurationError):
        status = getattr(exc, "status_code", 400)
        return JSONResponse({"error": str(exc)}, status_code=status)

    @app.exception_handler(UpstreamStatusError)
    async def _upstream_status(request: Request, exc: UpstreamStatusError):
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(TransportError)
    async def _transport_error(request: Request, exc: TransportError):
        logger.error("Upstream unreachable for %s: %s", request.url.path, exc)
        return JSONResponse({"error": str(exc)}, status_code=502)

    @app.get("/api/proxy/stream/{session_id}")
    async def stream_feed(session_id: str, request: Request):
        origin = request.headers.get("origin")
        feed = await relay.open(session_id, origin=origin or "")
        return RelayStreamingResponse(
            feed,
            media_type="text/event-stream",
            headers=sse_headers(origin),
        )

    @app.get("/api/proxy/requests/{session_id}")
    async def session_requests(session_id: str, limit: int = 100, offset: int = 0):
        url = await resolve_session_url(resolver, ORIGIN_REQUESTS_PATH, session_id)
        params = {"limit": clamp_history_limit(limit), "offset": max(offset, 0)}
        try:
            resp = await client.get(url, params=params, timeout=30.0)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to fetch requests: {exc}") from exc
        return _json_passthrough(resp)

    @app.post("/api/proxy/create")
    async def create_session():
        base = await resolver.require()
        try:
            resp = await client.post(build_url(base, ORIGIN_CREATE_PATH), timeout=30.0)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to create session: {exc}") from exc
        return _json_passthrough(resp)

    @app.get("/api/config")
    async def api_config():
        return {"apiUrl": await resolver.resolve()}

    @app.get("/health")
    async def health():
        configured = await resolver.resolve() is not None
        return {
            "status": "healthy" if configured else "degraded",
            "origin": "configured" if configured else "missing",
            "version": __version__,
        }

    return app


def _json_passthrough(resp: httpx.Response) -> JSONResponse:
    """Return the origin's JSON body under the origin's status code."""
    try:
        data = resp.json()
    except ValueError:
        logger.warning("Origin answered %d with a non-JSON body", resp.status_code)
        return JSONResponse(
            {"error": f"Backend error: {resp.reason_phrase}"},
            status_code=resp.status_code if not resp.is_success else 502,
        )
    return JSONResponse(data, status_code=resp.status_code)
