"""
app.py

Responsibility: Assemble the FastAPI application from a ServiceConfig.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from . import handlers, middlewares
from .config import ServiceConfig


def create_app(config: ServiceConfig, logger: Any = None) -> FastAPI:
    # Debug pages only outside production-like environments.
    app = FastAPI(title=f"{config.project}-{config.app}", debug=config.debug)
    middlewares.install(app, logger)
    app.include_router(handlers.build_router(logger), prefix=f"/{config.app}")
    return app
