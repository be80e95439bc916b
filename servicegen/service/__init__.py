"""
Service boilerplate.

This package is copied verbatim into every generated project and is also
importable on its own:
- `log.py`: leveled log router (per-level rotating JSON files + console)
- `config.py`: conf.yaml loading and defaults
- `middlewares.py`: CORS, request logging, auth stubs, parameter trimming
- `handlers.py`: sample routes
- `app.py`: FastAPI application factory

Modules import each other relatively so that the package works under any
name it is copied to.
"""
