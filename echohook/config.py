"""Configuration loading, validation, and origin address resolution."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import quote

import redis.asyncio as aioredis
import yaml
from redis.exceptions import RedisError

from .errors import ConfigurationError, ServiceUnavailable
from .types import (
    DEFAULT_ENV_VARS,
    ConfigStore,
    EchoHookConfig,
    HistoryConfig,
    OriginConfig,
    ReconnectConfig,
    RelayConfig,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = [
    "echohook.yaml",
    "echohook.yml",
    "echohook.json",
]

# Origin routes
ORIGIN_CREATE_PATH = "/c"
ORIGIN_FEED_PATH = "/s/{session_id}"
ORIGIN_REQUESTS_PATH = "/r/{session_id}"
ORIGIN_INGEST_PATH = "/i/{session_id}"

# Relay routes, mirror of the above
RELAY_FEED_PATH = "/api/proxy/stream/{session_id}"
RELAY_REQUESTS_PATH = "/api/proxy/requests/{session_id}"

MAX_HISTORY_LIMIT = 1000


def build_url(base: str, path_template: str, session_id: str = "") -> str:
    """Join a base address and a route template, quoting the session id."""
    path = path_template.format(session_id=quote(session_id, safe=""))
    return f"{base.rstrip('/')}{path}"


def clamp_history_limit(limit: int) -> int:
    return max(1, min(limit, MAX_HISTORY_LIMIT))


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------

def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(section).__name__}")
    return section


def _build_config(raw: dict[str, Any]) -> EchoHookConfig:
    """Build an EchoHookConfig from a raw dict."""
    if not isinstance(raw, dict):
        raise ValueError(f"Config must be a mapping, got {type(raw).__name__}")

    origin_raw = _section(raw, "origin")
    origin = OriginConfig(
        api_url=origin_raw.get("api_url"),
        redis_url=origin_raw.get("redis_url"),
        redis_key=origin_raw.get("redis_key", "config:api_url"),
        redis_db=origin_raw.get("redis_db", 1),
        env_vars=list(origin_raw.get("env_vars", DEFAULT_ENV_VARS)),
    )

    relay_raw = _section(raw, "relay")
    relay = RelayConfig(
        host=relay_raw.get("host", "0.0.0.0"),
        port=relay_raw.get("port", 3000),
        connect_timeout=relay_raw.get("connect_timeout", 10.0),
    )

    reconnect_raw = _section(raw, "reconnect")
    reconnect = ReconnectConfig(
        base_delay=reconnect_raw.get("base_delay", 1.0),
        max_delay=reconnect_raw.get("max_delay", 30.0),
        max_attempts=reconnect_raw.get("max_attempts", 10),
    )

    history_raw = _section(raw, "history")
    history = HistoryConfig(limit=history_raw.get("limit", 100))

    return EchoHookConfig(origin=origin, relay=relay, reconnect=reconnect, history=history)


def validate_config(config: EchoHookConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.reconnect.base_delay <= 0:
        errors.append("reconnect.base_delay must be > 0")
    if config.reconnect.max_delay < config.reconnect.base_delay:
        errors.append(
            f"reconnect.max_delay ({config.reconnect.max_delay}) must be >= "
            f"reconnect.base_delay ({config.reconnect.base_delay})"
        )
    if config.reconnect.max_attempts < 0:
        errors.append("reconnect.max_attempts must be >= 0")

    if not 1 <= config.history.limit <= MAX_HISTORY_LIMIT:
        errors.append(f"history.limit must be between 1 and {MAX_HISTORY_LIMIT}")

    if not 0 < config.relay.port < 65536:
        errors.append(f"relay.port out of range: {config.relay.port}")

    if not (config.origin.api_url or config.origin.redis_url or config.origin.env_vars):
        errors.append("No origin source configured (api_url, redis_url or env_vars)")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> EchoHookConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    return _build_config(raw)


# ---------------------------------------------------------------------------
# Dynamic config stores
# ---------------------------------------------------------------------------

class StaticConfigStore:
    """In-memory ConfigStore, for tests and single-process setups."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self.values = dict(values or {})
        self.lookups = 0

    async def get(self, key: str) -> str | None:
        self.lookups += 1
        return self.values.get(key)

    async def aclose(self) -> None:
        pass


class RedisConfigStore:
    """ConfigStore backed by a Redis key, read on every lookup.

    Lookup failures are logged and reported as "absent" so resolution can
    fall through to the environment.
    """

    def __init__(self, url: str, *, db: int = 1) -> None:
        self.url = url
        self._client = aioredis.from_url(url, db=db, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except (RedisError, OSError) as exc:
            logger.error("Failed to read %s from Redis: %s", key, exc)
            return None
        return value or None

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# ConfigResolver
# ---------------------------------------------------------------------------

class ConfigResolver:
    """Resolves the origin base address; built once per process and injected.

    Order: dynamic store lookup, then each environment variable in
    ``env_vars``, then the static ``default``. Absent everywhere means
    ``None`` (``require()`` raises ``ServiceUnavailable``).
    """

    def __init__(
        self,
        store: ConfigStore | None = None,
        *,
        key: str = "config:api_url",
        env_vars: list[str] | None = None,
        default: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.store = store
        self.key = key
        self.env_vars = list(DEFAULT_ENV_VARS if env_vars is None else env_vars)
        self.default = default
        self._environ = os.environ if environ is None else environ

    @classmethod
    def from_config(
        cls,
        config: EchoHookConfig,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> ConfigResolver:
        origin = config.origin
        store = RedisConfigStore(origin.redis_url, db=origin.redis_db) if origin.redis_url else None
        return cls(
            store,
            key=origin.redis_key,
            env_vars=origin.env_vars,
            default=origin.api_url,
            environ=environ,
        )

    async def resolve(self) -> str | None:
        candidates: list[str | None] = []
        if self.store is not None:
            candidates.append(await self.store.get(self.key))
        candidates.extend(self._environ.get(name) for name in self.env_vars)
        candidates.append(self.default)
        for value in candidates:
            if value and value.strip():
                return value.strip().rstrip("/")
        return None

    async def require(self) -> str:
        base = await self.resolve()
        if base is None:
            raise ServiceUnavailable()
        return base

    async def aclose(self) -> None:
        if self.store is not None:
            await self.store.aclose()


async def resolve_session_url(
    resolver: ConfigResolver,
    path_template: str,
    session_id: str,
) -> str:
    """Full URL for a per-session route; ConfigurationError when unusable."""
    if not session_id or not session_id.strip():
        raise ConfigurationError("session id must not be empty")
    base = await resolver.require()
    return build_url(base, path_template, session_id)
