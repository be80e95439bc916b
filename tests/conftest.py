from __future__ import annotations

from typing import Any

import pytest
from loguru import logger

from servicegen.service import log


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    log.reset()
    logger.remove()


class RecordingLogger:
    """Stands in for the router where only the calls matter."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def debug(self, message: str, /, **fields: Any) -> None:
        self.records.append(("debug", message, fields))

    def info(self, message: str, /, **fields: Any) -> None:
        self.records.append(("info", message, fields))

    def warn(self, message: str, /, **fields: Any) -> None:
        self.records.append(("warn", message, fields))

    def error(self, message: str, err: BaseException | None = None, /, **fields: Any) -> None:
        self.records.append(("error", message, {"error": err, **fields}))

    def close(self) -> None:
        pass

    def levels(self) -> list[str]:
        return [level for level, _msg, _fields in self.records]


@pytest.fixture
def recorder() -> RecordingLogger:
    return RecordingLogger()
