"""Shared configuration loader for hwconnect."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".hwconnect.yaml"
_CONFIG_PATH_OVERRIDE: Path | None = None

ENV_PREFIX = "HWCONNECT_"
BACKEND_ENV_PREFIX = "HWCONNECT_BACKEND_"


@dataclass
class ConnectConfig:
    """Runtime settings for methods, discovery and backend access."""

    backends: dict[str, list[str]] = field(default_factory=dict)
    http_timeout: float = 30.0
    gap_limit: int = 1
    poll_interval: float = 0.1
    device_ready_timeout: float = 10.0
    coins_file: Path | None = None


def set_default_config_path(path: str | Path | None) -> None:
    """Remember a user-supplied config path for future loads."""

    global _CONFIG_PATH_OVERRIDE
    _CONFIG_PATH_OVERRIDE = Path(path).expanduser() if path else None


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc
    if value < 0:
        raise ConfigurationError(f"Negative value in {source}: {raw}")
    return value


def _coerce_positive_int(raw: Any, *, source: str) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc
    if value <= 0:
        raise ConfigurationError(f"Expected a positive integer in {source}: {raw}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _parse_backend_urls(raw: Any, *, source: str) -> list[str]:
    if isinstance(raw, str):
        urls = [piece.strip() for piece in raw.split(",") if piece.strip()]
    elif isinstance(raw, (list, tuple)):
        urls = [str(piece).strip() for piece in raw if str(piece).strip()]
    else:
        raise ConfigurationError(f"Backend URLs in {source} must be a string or list")
    for url in urls:
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ConfigurationError(f"Invalid backend URL in {source}: {url}")
    return [url.rstrip("/") for url in urls]


def load_connect_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ConnectConfig:
    """Load configuration from environment variables and optional YAML.

    Precedence is ``overrides`` > environment > config file > defaults.
    Backend URLs are merged per coin shortcut in the same order.
    """

    env_map = os.environ if env is None else env
    explicit_path = config_path is not None or _CONFIG_PATH_OVERRIDE is not None
    path = (
        Path(config_path).expanduser()
        if config_path is not None
        else _CONFIG_PATH_OVERRIDE or DEFAULT_CONFIG_PATH
    )

    file_config = _load_config_file(path, required=explicit_path)
    discovery_section = _section(file_config, "discovery", path)
    http_section = _section(file_config, "http", path)
    backends_section = _section(file_config, "backends", path)

    override_map = dict(overrides or {})

    backends: dict[str, list[str]] = {}
    for shortcut, raw in backends_section.items():
        backends[str(shortcut).lower()] = _parse_backend_urls(raw, source=f"{path} backends.{shortcut}")
    for key, raw in env_map.items():
        if key.startswith(BACKEND_ENV_PREFIX) and raw:
            shortcut = key[len(BACKEND_ENV_PREFIX):].lower()
            backends[shortcut] = _parse_backend_urls(raw, source=key)
    for shortcut, raw in (override_map.get("backends") or {}).items():
        backends[str(shortcut).lower()] = _parse_backend_urls(raw, source="overrides")

    http_timeout = _first_value(
        _coerce_float(override_map.get("http_timeout"), source="overrides"),
        _coerce_float(env_map.get(f"{ENV_PREFIX}TIMEOUT"), source="environment"),
        _coerce_float(http_section.get("timeout"), source=f"{path} http.timeout"),
        30.0,
    )
    gap_limit = _first_value(
        _coerce_positive_int(override_map.get("gap_limit"), source="overrides"),
        _coerce_positive_int(env_map.get(f"{ENV_PREFIX}GAP_LIMIT"), source="environment"),
        _coerce_positive_int(discovery_section.get("gap_limit"), source=f"{path} discovery.gap_limit"),
        1,
    )
    poll_interval = _first_value(
        _coerce_float(override_map.get("poll_interval"), source="overrides"),
        _coerce_float(env_map.get(f"{ENV_PREFIX}POLL_INTERVAL"), source="environment"),
        _coerce_float(
            discovery_section.get("poll_interval"), source=f"{path} discovery.poll_interval"
        ),
        0.1,
    )
    device_ready_timeout = _first_value(
        _coerce_float(override_map.get("device_ready_timeout"), source="overrides"),
        _coerce_float(env_map.get(f"{ENV_PREFIX}DEVICE_READY_TIMEOUT"), source="environment"),
        _coerce_float(
            discovery_section.get("device_ready_timeout"),
            source=f"{path} discovery.device_ready_timeout",
        ),
        10.0,
    )
    coins_file = _first_value(
        override_map.get("coins_file"),
        env_map.get(f"{ENV_PREFIX}COINS_FILE"),
        file_config.get("coins_file"),
    )

    return ConnectConfig(
        backends=backends,
        http_timeout=http_timeout,
        gap_limit=gap_limit,
        poll_interval=poll_interval,
        device_ready_timeout=device_ready_timeout,
        coins_file=Path(coins_file).expanduser() if coins_file else None,
    )
