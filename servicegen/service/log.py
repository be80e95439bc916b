"""
log.py

Responsibility: Build the leveled log router for a service.

One rotating JSON file per severity, plus an optional stdout mirror:
- debug.log / info.log / warn.log / error.log never overlap; every record lands
  in exactly one of them.
- The console sink is a plain threshold and may repeat what a file received.

The router is a loguru "tee": each destination is a loguru sink with its own
severity filter. Records are bound with a per-router token so that sinks only
ever see records emitted through the router that owns them.

Usage:
    from <package> import log

    log.new_logger(config)          # installs the process-wide default
    log.info("hello", name="world")
    log.error("boom", err)
"""

from __future__ import annotations

import json
import os
import sys
import time
import traceback
import uuid
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable

from loguru import logger as _loguru

# Keys the router binds for its own bookkeeping; never rendered.
_TOKEN_KEY = "_router"
_JSON_KEY = "_json"
_CONSOLE_KEY = "_console"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEV_ENV = "dev"


class Level(IntEnum):
    """Severity levels, numbered like loguru's own."""

    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40

    @property
    def backend_name(self) -> str:
        return "WARNING" if self is Level.WARN else self.name

    @property
    def stem(self) -> str:
        return self.name.lower()


_LEVEL_ALIASES = {"warning": Level.WARN}


def parse_level(name: str | None) -> Level:
    """Map a config string to a Level; unknown or empty names mean INFO."""
    key = (name or "").strip().lower()
    if key in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[key]
    try:
        return Level[key.upper()]
    except KeyError:
        return Level.INFO


@dataclass(frozen=True)
class LoggerConfig:
    project: str
    app: str
    env: str
    base_dir: str
    level: str = "info"
    max_size: int = 100  # MB
    max_age: int = 15  # days
    max_backups: int = 30
    compress: bool = True
    console: bool = False


def log_paths(config: LoggerConfig) -> dict[Level, Path]:
    """
    Destination file for each level.

    Non-dev: <base>/<env>/<project>/<app>/<level>.log
    Dev:     ./<project>-<app>-<level>.log
    """
    paths: dict[Level, Path] = {}
    for level in Level:
        if config.env != DEV_ENV:
            paths[level] = Path(config.base_dir, config.env, config.project, config.app, f"{level.stem}.log")
        else:
            paths[level] = Path(".", f"{config.project}-{config.app}-{level.stem}.log")
    return paths


# ---------- severity predicates ----------

Predicate = Callable[[int], bool]


def only(level: Level) -> Predicate:
    """
    Accept `level` and nothing that belongs to a neighbouring file.

    Half-open ranges (previous level, level] over the ordered levels, so that
    every level number lands in exactly one file: up to DEBUG goes to debug,
    anything above WARN (loguru's CRITICAL included) goes to error.
    """
    if level is Level.DEBUG:
        return lambda no: no <= Level.DEBUG
    lower = Level(level - 10)
    if level is Level.ERROR:
        return lambda no: no > lower
    return lambda no: lower < no <= level


def at_least(level: Level) -> Predicate:
    return lambda no: no >= level


# ---------- rotation ----------


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Prune rotated files by age and count.

    loguru calls this after every rollover with the rotated files that belong
    to one sink. A bound of 0 disables it.
    """

    max_age: int = 15
    max_backups: int = 30

    def __call__(self, files: list[str]) -> None:
        newest_first = sorted(files, key=_mtime, reverse=True)
        if self.max_age > 0:
            cutoff = time.time() - self.max_age * 86400
            expired = [f for f in newest_first if _mtime(f) < cutoff]
            newest_first = [f for f in newest_first if f not in expired]
        else:
            expired = []
        if self.max_backups > 0:
            expired.extend(newest_first[self.max_backups :])
        for path in expired:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass


def _mtime(path: str) -> float:
    try:
        return os.stat(path).st_mtime
    except FileNotFoundError:
        return 0.0


# ---------- encoders ----------


def _timestamp(record: dict[str, Any]) -> str:
    t = record["time"]
    return f"{t.strftime(TIMESTAMP_FORMAT)}:{t.microsecond // 1000:03d}"


def _caller(record: dict[str, Any]) -> str:
    parent = Path(record["file"].path).parent.name
    name = record["file"].name
    where = f"{parent}/{name}" if parent else name
    return f"{where}:{record['line']}"


def _level_name(record: dict[str, Any]) -> str:
    name = record["level"].name
    return "WARN" if name == "WARNING" else name


def _fields(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record["extra"].items() if not k.startswith("_")}


def _payload(record: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "timestamp": _timestamp(record),
        "level": _level_name(record),
        "message": record["message"],
        "caller": _caller(record),
    }
    for key, value in _fields(record).items():
        payload.setdefault(key, value)
    return payload


def json_format(record: dict[str, Any]) -> str:
    """loguru format callable: one JSON object per line."""
    record["extra"][_JSON_KEY] = json.dumps(_payload(record), ensure_ascii=False, default=str)
    return "{extra[%s]}\n" % _JSON_KEY


def console_format(record: dict[str, Any]) -> str:
    """loguru format callable: tab separated, attachments as trailing JSON."""
    fields = _fields(record)
    stack = fields.pop("stacktrace", None)
    parts = [_timestamp(record), _level_name(record), _caller(record), record["message"]]
    if fields:
        parts.append(json.dumps(fields, ensure_ascii=False, default=str))
    line = "\t".join(parts)
    if stack:
        line = f"{line}\n{stack.rstrip()}"
    record["extra"][_CONSOLE_KEY] = line
    return "{extra[%s]}\n" % _CONSOLE_KEY


# ---------- router ----------


class NopLogger:
    """Default facility: accepts every call, writes nothing."""

    def _emit(self, level: Level, message: str, fields: dict[str, Any], depth: int) -> None:
        pass

    def debug(self, message: str, /, **fields: Any) -> None:
        pass

    def info(self, message: str, /, **fields: Any) -> None:
        pass

    def warn(self, message: str, /, **fields: Any) -> None:
        pass

    def error(self, message: str, err: BaseException | None = None, /, **fields: Any) -> None:
        pass

    def close(self) -> None:
        pass


class LeveledLogger:
    """
    Composite sink built from one LoggerConfig.

    Every emission is offered to all of this router's sinks; each sink writes
    it only if its predicate accepts the record's level.
    """

    def __init__(self, config: LoggerConfig) -> None:
        self.config = config
        self.paths = log_paths(config)
        self._token = uuid.uuid4().hex
        self._bound = _loguru.bind(**{_TOKEN_KEY: self._token})
        self._sink_ids: list[int] = []

        _release_stock_handler()

        retention = RetentionPolicy(max_age=config.max_age, max_backups=config.max_backups)
        for level, path in self.paths.items():
            self._sink_ids.append(
                _loguru.add(
                    _literal(path),
                    level=0,
                    format=json_format,
                    filter=self._gate(only(level)),
                    rotation=f"{config.max_size} MB",
                    retention=retention,
                    compression="gz" if config.compress else None,
                    encoding="utf-8",
                    delay=True,
                    catch=True,
                )
            )

        if config.console:
            self._sink_ids.append(
                _loguru.add(
                    _stdout,
                    level=0,
                    format=console_format,
                    filter=self._gate(at_least(parse_level(config.level))),
                    colorize=False,
                    catch=True,
                )
            )

    def _gate(self, predicate: Predicate) -> Callable[[dict[str, Any]], bool]:
        token = self._token

        def accept(record: dict[str, Any]) -> bool:
            return record["extra"].get(_TOKEN_KEY) == token and predicate(record["level"].no)

        return accept

    def _emit(self, level: Level, message: str, fields: dict[str, Any], depth: int) -> None:
        # depth counts frames above _emit: 2 is the caller of debug()/info()/...
        self._bound.bind(**fields).opt(depth=depth).log(level.backend_name, message)

    def debug(self, message: str, /, **fields: Any) -> None:
        self._emit(Level.DEBUG, message, fields, 2)

    def info(self, message: str, /, **fields: Any) -> None:
        self._emit(Level.INFO, message, fields, 2)

    def warn(self, message: str, /, **fields: Any) -> None:
        self._emit(Level.WARN, message, fields, 2)

    def error(self, message: str, err: BaseException | None = None, /, **fields: Any) -> None:
        self._emit(Level.ERROR, message, _error_fields(err, fields, 2), 2)

    def close(self) -> None:
        """Remove this router's sinks; later emissions are dropped."""
        while self._sink_ids:
            _loguru.remove(self._sink_ids.pop())


def _error_fields(err: BaseException | None, fields: dict[str, Any], depth: int) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if err is not None:
        out["error"] = str(err) or type(err).__name__
    # Drop the frames of the logging call itself.
    out["stacktrace"] = "".join(traceback.format_stack()[: -depth]).rstrip()
    for key, value in fields.items():
        out.setdefault(key, value)
    return out


def _literal(path: Path) -> str:
    # loguru expands {time} style fields in file paths.
    return str(path).replace("{", "{{").replace("}", "}}")


def _stdout(message: Any) -> None:
    # Resolved per write so that a replaced sys.stdout is honoured.
    sys.stdout.write(message)
    sys.stdout.flush()


_stock_handler_released = False


def _release_stock_handler() -> None:
    """Drop loguru's pre-installed stderr handler (id 0) once per process."""
    global _stock_handler_released
    if _stock_handler_released:
        return
    _stock_handler_released = True
    try:
        _loguru.remove(0)
    except ValueError:
        # Already removed by whoever configured loguru first.
        pass


# ---------- process-wide default ----------

_default: LeveledLogger | NopLogger = NopLogger()


def get_logger() -> LeveledLogger | NopLogger:
    return _default


def set_logger(new: LeveledLogger | NopLogger) -> None:
    """Install `new` as the default facility, closing the one it replaces."""
    global _default
    previous, _default = _default, new
    if previous is not new:
        previous.close()


def reset() -> None:
    set_logger(NopLogger())


def new_logger(config: LoggerConfig, *, install: bool = True) -> LeveledLogger:
    """
    Build a router for `config`.

    With install=True the router replaces the process-wide default entirely;
    records emitted afterwards never reach the previous destinations.
    """
    router = LeveledLogger(config)
    if install:
        set_logger(router)
    return router


def debug(message: str, /, **fields: Any) -> None:
    _default._emit(Level.DEBUG, message, fields, 2)


def info(message: str, /, **fields: Any) -> None:
    _default._emit(Level.INFO, message, fields, 2)


def warn(message: str, /, **fields: Any) -> None:
    _default._emit(Level.WARN, message, fields, 2)


def error(message: str, err: BaseException | None = None, /, **fields: Any) -> None:
    _default._emit(Level.ERROR, message, _error_fields(err, fields, 2), 2)
