"""
config.py

Responsibility: Load `conf.yaml` into a typed, immutable service configuration.

The environment comes from `envID` (default: dev). Unset numeric log settings
fall back to the service defaults before the logger ever sees them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .log import DEV_ENV, LoggerConfig

ENV_VAR = "envID"

DEFAULT_LEVEL = "info"
DEFAULT_MAX_SIZE = 100
DEFAULT_MAX_AGE = 15
DEFAULT_MAX_BACKUP = 30
DEFAULT_PORT = 8080


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class ServiceConfig:
    project: str
    app: str
    port: int
    env: str
    log: LoggerConfig

    @property
    def debug(self) -> bool:
        return self.env == DEV_ENV


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    raw = data.get(key) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"`{key}` must be a mapping when provided.")
    return raw


def _int(section: dict[str, Any], key: str, default: int) -> int:
    raw = section.get(key)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"`{key}` must be an integer, got {raw!r}") from e
    return value or default


_TRUE = ("true", "yes", "on", "1")
_FALSE = ("false", "no", "off", "0")


def _bool(section: dict[str, Any], key: str, default: bool) -> bool:
    raw = section.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"`{key}` must be a boolean, got {raw!r}")


def current_env() -> str:
    return (os.environ.get(ENV_VAR) or "").strip() or DEV_ENV


def load_config(path: str | Path = "conf.yaml", env: str | None = None) -> ServiceConfig:
    """
    Parse `path` into a ServiceConfig. Any problem is a ConfigError; callers
    should treat it as fatal.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {p}: {e}") from e

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {p} is not valid YAML") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {p} must be a mapping at the top level.")

    project = str(_section(data, "project").get("name") or "").strip()
    app_section = _section(data, "app")
    app = str(app_section.get("name") or "").strip()
    if not project or not app:
        raise ConfigError("Config must define `project.name` and `app.name`.")

    env = env or current_env()
    log_section = _section(data, "log")

    log_config = LoggerConfig(
        project=project,
        app=app,
        env=env,
        base_dir=str(log_section.get("file") or "").strip(),
        level=str(log_section.get("level") or DEFAULT_LEVEL).strip().lower(),
        max_size=_int(log_section, "maxsize", DEFAULT_MAX_SIZE),
        max_age=_int(log_section, "max_age", DEFAULT_MAX_AGE),
        max_backups=_int(log_section, "max_backup", DEFAULT_MAX_BACKUP),
        compress=_bool(log_section, "compress", True),
        console=_bool(log_section, "console_enable", False),
    )

    return ServiceConfig(
        project=project,
        app=app,
        port=_int(app_section, "port", DEFAULT_PORT),
        env=env,
        log=log_config,
    )
