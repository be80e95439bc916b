"""
handlers.py

Responsibility: Sample route handlers. `home` doubles as a usage example of
the log API at every file level.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from . import log


def build_router(logger: Any = None) -> APIRouter:
    router = APIRouter()

    def _logger() -> Any:
        return logger if logger is not None else log.get_logger()

    @router.get("/")
    async def home() -> dict[str, Any]:
        lg = _logger()
        lg.error("error", ValueError("error"))
        lg.warn("warn", error=str(ValueError("warning")))
        lg.info("hello", name="world")
        return {"status": True, "msg": "Hello World"}

    return router
