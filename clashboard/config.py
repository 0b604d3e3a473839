"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .types import (
    ClashboardConfig,
    ControllerConfig,
    DashboardConfig,
    LOG_LEVELS as CONTROLLER_LOG_LEVELS,
    LedgerConfig,
    LoggingConfig,
    LogsConfig,
    StreamConfig,
)

CONFIG_FILENAMES = [
    "clashboard.yaml",
    "clashboard.yml",
    "clashboard.json",
]

SECRET_ENV = "CLASHBOARD_SECRET"

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


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
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def _build_config(raw: dict[str, Any]) -> ClashboardConfig:
    """Build a ClashboardConfig from a raw dict."""
    controller_raw = _section(raw, "controller")
    controller = ControllerConfig(
        url=str(controller_raw.get("url", "http://127.0.0.1:9090")).rstrip("/"),
        secret=str(controller_raw.get("secret") or ""),
        timeout=float(controller_raw.get("timeout", 10.0)),
    )
    env_secret = os.environ.get(SECRET_ENV)
    if env_secret:
        controller.secret = env_secret

    stream_raw = _section(raw, "stream")
    stream = StreamConfig(
        interval=float(stream_raw.get("interval", 1.0)),
        reconnect_delay=float(stream_raw.get("reconnect_delay", 1.0)),
        max_reconnect_delay=float(stream_raw.get("max_reconnect_delay", 30.0)),
    )

    ledger_raw = _section(raw, "ledger")
    ledger = LedgerConfig(
        retain_closed=bool(ledger_raw.get("retain_closed", False)),
    )

    logs_raw = _section(raw, "logs")
    logs = LogsConfig(
        level=str(logs_raw.get("level") or "").lower(),
        max_entries=int(logs_raw.get("max_entries", 500)),
        keep_entries=int(logs_raw.get("keep_entries", 300)),
    )

    dashboard_raw = _section(raw, "dashboard")
    dashboard = DashboardConfig(
        host=str(dashboard_raw.get("host", "127.0.0.1")),
        port=int(dashboard_raw.get("port", 9191)),
    )

    logging_raw = _section(raw, "logging")
    logging_config = LoggingConfig(
        level=str(logging_raw.get("level", "INFO")).upper(),
    )

    return ClashboardConfig(
        version=str(raw.get("version", "0.1")),
        controller=controller,
        stream=stream,
        ledger=ledger,
        logs=logs,
        dashboard=dashboard,
        logging=logging_config,
    )


def validate_config(config: ClashboardConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    parsed = urlparse(config.controller.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        errors.append(
            f"controller.url must be an http(s) URL, got '{config.controller.url}'"
        )

    if config.controller.timeout <= 0:
        errors.append("controller.timeout must be > 0")

    if config.stream.interval < 0:
        errors.append("stream.interval must be >= 0")

    if config.stream.reconnect_delay <= 0:
        errors.append("stream.reconnect_delay must be > 0")

    if config.stream.max_reconnect_delay < config.stream.reconnect_delay:
        errors.append(
            f"stream.max_reconnect_delay ({config.stream.max_reconnect_delay}) must be >= "
            f"reconnect_delay ({config.stream.reconnect_delay})"
        )

    if config.logs.level and config.logs.level not in CONTROLLER_LOG_LEVELS:
        errors.append(
            f"logs.level must be one of {', '.join(CONTROLLER_LOG_LEVELS)}, got '{config.logs.level}'"
        )

    if not 0 < config.logs.keep_entries <= config.logs.max_entries:
        errors.append(
            f"logs.keep_entries ({config.logs.keep_entries}) must be > 0 and <= "
            f"max_entries ({config.logs.max_entries})"
        )

    if not 0 < config.dashboard.port < 65536:
        errors.append(f"dashboard.port out of range: {config.dashboard.port}")

    if config.logging.level not in LOG_LEVELS:
        errors.append(
            f"logging.level must be one of {', '.join(sorted(LOG_LEVELS))}"
        )

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> ClashboardConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
