"""
servicegen package

Scaffolds FastAPI services that come with a leveled, rotating logger.

Key responsibilities are split across modules:
- `descriptor.py`: typed description of the project to generate
- `materializer.py`: directory creation, template fetching, copying/rendering, git
- `cli.py`: CLI entrypoint and orchestration
- `service/`: the boilerplate package copied into each generated project
  (log router, config, middlewares, handlers, app factory)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
