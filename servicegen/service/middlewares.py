"""
middlewares.py

Responsibility: The request middleware chain shared by generated services.

Outermost first:
- RequestLogger: one info record per request (errors are logged and re-raised)
- Cors: reflect the caller's Origin, short-circuit preflight requests
- Authenticate / Authorize: extension points, currently pass-through
- ParameterTrim: strip whitespace around GET query values

RequestLogger takes an optional logger. Without one the process-wide default
from `log.get_logger()` is looked up per request.
"""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import parse_qsl, urlencode

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp, Receive, Scope, Send

from . import log

CORS_HEADERS = {
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS, PUT, DELETE, UPDATE",
    "Access-Control-Allow-Headers": "Origin, X-Requested-With, Content-Type, Accept, Authorization",
    "Access-Control-Expose-Headers": (
        "Content-Length, Access-Control-Allow-Origin, Access-Control-Allow-Headers, "
        "Cache-Control, Content-Language, Content-Type"
    ),
    "Access-Control-Allow-Credentials": "false",
}


class _LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, logger: Any = None) -> None:
        super().__init__(app)
        self._logger = logger

    @property
    def logger(self) -> Any:
        return self._logger if self._logger is not None else log.get_logger()


class RequestLogger(_LoggingMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.perf_counter()
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"

        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(path, e, method=request.method, cost=time.perf_counter() - start)
            raise

        self.logger.info(
            path,
            status=response.status_code,
            method=request.method,
            ip=request.client.host if request.client else "",
            **{"user-agent": request.headers.get("user-agent", "")},
            errors="",
            cost=time.perf_counter() - start,
        )
        return response


class Cors(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS":
            response: Response = Response(status_code=204)
        else:
            response = await call_next(request)

        origin = request.headers.get("origin")
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers.update(CORS_HEADERS)
        return response


class Authenticate(BaseHTTPMiddleware):
    """Login check. Pass-through until a service plugs in its own."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        return await call_next(request)


class Authorize(BaseHTTPMiddleware):
    """Permission check. Pass-through until a service plugs in its own."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        return await call_next(request)


class ParameterTrim:
    """
    Plain ASGI middleware: rewrites the query string of GET requests with each
    value stripped. Bodies of other methods are left untouched.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] == "GET" and scope.get("query_string"):
            scope = dict(scope)
            scope["query_string"] = trim_query(scope["query_string"])
        await self.app(scope, receive, send)


def trim_query(raw: bytes) -> bytes:
    pairs = parse_qsl(raw.decode("latin-1"), keep_blank_values=True)
    return urlencode([(k, v.strip()) for k, v in pairs]).encode("latin-1")


def install(app: FastAPI, logger: Any = None) -> None:
    # Starlette wraps in reverse order of registration: last added is outermost.
    app.add_middleware(ParameterTrim)
    app.add_middleware(Authorize)
    app.add_middleware(Authenticate)
    app.add_middleware(Cors)
    app.add_middleware(RequestLogger, logger=logger)
