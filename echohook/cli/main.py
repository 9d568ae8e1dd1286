"""CLI: echohook relay, watch, history, create, test, config validate."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import httpx

from ..client import TEST_PAYLOAD
from ..config import ConfigResolver, load_config, validate_config
from ..curl import build_curl
from ..errors import ConfigurationError, ConnectionExhausted, EchoHookError
from ..events import request_to_dict
from ..reconnect import ReconnectionPolicy
from ..store import matches_filter
from ..types import CapturedRequestEvent, ConnectionState, EchoHookConfig


def _resolver(args, config: EchoHookConfig) -> ConfigResolver:
    if args.origin:
        return ConfigResolver(env_vars=[], default=args.origin)
    return ConfigResolver.from_config(config)


def _load(args) -> EchoHookConfig:
    try:
        return load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)


def _format_event(event: CapturedRequestEvent, source: str) -> str:
    ts = event.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    return (
        f"[{source}] {ts} {event.method:<7} {event.path} "
        f"({event.content_length} bytes from {event.source_address or 'unknown'}) "
        f"id={event.request_id}"
    )


def cmd_relay(args):
    """Serve the relay over HTTP."""
    import uvicorn

    from ..relay import create_app

    # Uvicorn force-cancels open feeds after the graceful-shutdown timeout;
    # the resulting CancelledError tracebacks are expected.
    class _SuppressCancelled(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            if record.exc_info and record.exc_info[0] is asyncio.CancelledError:
                return False
            return True

    logging.getLogger("uvicorn.error").addFilter(_SuppressCancelled())

    config = _load(args)
    host = args.host or config.relay.host
    port = args.port or config.relay.port
    # without --origin the app builds and closes its own resolver
    resolver = ConfigResolver(env_vars=[], default=args.origin) if args.origin else None
    app = create_app(config=config, resolver=resolver)
    print(f"echohook relay on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=args.log_level.lower(), timeout_graceful_shutdown=2)


async def _watch(args, config: EchoHookConfig) -> int:
    from ..viewer import SessionViewer

    def on_insert(event: CapturedRequestEvent, source: str) -> None:
        if not matches_filter(event, args.filter or ""):
            return
        if args.json:
            print(json.dumps({"source": source, **request_to_dict(event)}), flush=True)
        else:
            print(_format_event(event, source), flush=True)
        if args.curl:
            print(build_curl(event, args.curl_base or ""), flush=True)

    def on_state_change(state: ConnectionState) -> None:
        note = f" (retry {state.attempt + 1} in {state.next_delay:.0f}s)" if state.next_delay else ""
        print(f"-- {state.phase.value}{note}", file=sys.stderr, flush=True)

    resolver = _resolver(args, config)
    async with httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0)) as client:
        viewer = SessionViewer(
            args.session_id,
            resolver,
            client,
            policy=ReconnectionPolicy.from_config(config.reconnect),
            via_relay=args.via_relay,
            history_limit=args.limit or config.history.limit,
            on_insert=on_insert,
            on_state_change=on_state_change,
        )
        try:
            await viewer.start()
            await viewer.wait_history()
            if viewer.error:
                print(f"Error: {viewer.error}", file=sys.stderr)
            await viewer.wait()
        except ConfigurationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        except ConnectionExhausted as e:
            print(f"Error: {e}. Re-run to subscribe again.", file=sys.stderr)
            return 1
        finally:
            await viewer.stop()
            await resolver.aclose()
    return 0


def cmd_watch(args):
    """Stream a session's captured requests until interrupted."""
    config = _load(args)
    try:
        code = asyncio.run(_watch(args, config))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


async def _history(args, config: EchoHookConfig) -> None:
    from ..client import OriginClient

    resolver = _resolver(args, config)
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            page = await OriginClient(resolver, client).fetch_requests(
                args.session_id,
                limit=args.limit or config.history.limit,
                offset=args.offset,
            )
    finally:
        await resolver.aclose()

    if args.json:
        print(json.dumps({
            "total_requests": page.total_count,
            "requests": [request_to_dict(r) for r in page.requests if matches_filter(r, args.filter or "")],
        }, indent=2))
        return
    print(f"Session {args.session_id}: {page.total_count} requests")
    for event in page.requests:
        if not matches_filter(event, args.filter or ""):
            continue
        print(_format_event(event, "history"))


def cmd_history(args):
    """Print a session's stored requests."""
    config = _load(args)
    try:
        asyncio.run(_history(args, config))
    except EchoHookError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


async def _create(args, config: EchoHookConfig) -> None:
    from ..client import OriginClient

    resolver = _resolver(args, config)
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            info = await OriginClient(resolver, client).create_session()
    finally:
        await resolver.aclose()
    print(f"Session:   {info.session_id}")
    print(f"Ingest:    {info.ingestion_url}")
    print(f"Stream:    {info.stream_url}")
    print(f"Requests:  {info.requests_url}")
    print(f"Expires:   {info.expires_at}")


def cmd_create(args):
    """Create a capture session on the origin."""
    config = _load(args)
    try:
        asyncio.run(_create(args, config))
    except EchoHookError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


async def _send_test(args, config: EchoHookConfig) -> int:
    from ..client import OriginClient

    resolver = _resolver(args, config)
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await OriginClient(resolver, client).send_test(args.session_id, body=args.body)
    finally:
        await resolver.aclose()


def cmd_test(args):
    """Send a sample JSON delivery to a session."""
    config = _load(args)
    try:
        status = asyncio.run(_send_test(args, config))
    except EchoHookError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Test request delivered to {args.session_id} ({status})")


def cmd_config_validate(args):
    """Validate config file."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)

    print("Config is valid.")
    origin = config.origin
    print(f"  Origin api_url: {origin.api_url or '(none)'}")
    print(f"  Redis: {origin.redis_url or '(none)'} key={origin.redis_key}")
    print(f"  Env fallbacks: {', '.join(origin.env_vars) or '(none)'}")
    policy = ReconnectionPolicy.from_config(config.reconnect)
    schedule = ", ".join(f"{d:g}" for d in policy.schedule())
    print(f"  Reconnect schedule (s): {schedule or '(no retries)'}")


def main():
    parser = argparse.ArgumentParser(
        prog="echohook",
        description="Live webhook capture viewer and feed relay",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--origin", help="Origin base URL (overrides Redis/env/config lookup)")
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    subparsers = parser.add_subparsers(dest="command")

    # relay
    relay_parser = subparsers.add_parser("relay", help="Serve the feed relay")
    relay_parser.add_argument("--host", default=None)
    relay_parser.add_argument("--port", "-p", type=int, default=None)

    # watch
    watch_parser = subparsers.add_parser("watch", help="Follow a session's captured requests")
    watch_parser.add_argument("session_id", help="Session id")
    watch_parser.add_argument("--limit", "-n", type=int, default=None, help="History batch size")
    watch_parser.add_argument("--via-relay", action="store_true", help="Origin URL points at a relay")
    watch_parser.add_argument("--json", action="store_true", help="One JSON object per line")
    watch_parser.add_argument("--curl", action="store_true", help="Print a curl replay per request")
    watch_parser.add_argument("--curl-base", default=None, help="Base URL for curl replays")
    watch_parser.add_argument("--filter", "-f", default=None, help="Only show requests matching this text")

    # history
    history_parser = subparsers.add_parser("history", help="Print a session's stored requests")
    history_parser.add_argument("session_id", help="Session id")
    history_parser.add_argument("--limit", "-n", type=int, default=None)
    history_parser.add_argument("--offset", type=int, default=0)
    history_parser.add_argument("--json", action="store_true")
    history_parser.add_argument("--filter", "-f", default=None, help="Only show requests matching this text")

    # test
    test_parser = subparsers.add_parser("test", help="Send a sample JSON request to a session")
    test_parser.add_argument("session_id", help="Session id")
    test_parser.add_argument("--body", default=TEST_PAYLOAD, help="JSON body to send")

    # create
    subparsers.add_parser("create", help="Create a capture session")

    # config
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "relay":
        cmd_relay(args)
    elif args.command == "watch":
        cmd_watch(args)
    elif args.command == "history":
        cmd_history(args)
    elif args.command == "create":
        cmd_create(args)
    elif args.command == "test":
        cmd_test(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: echohook config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
