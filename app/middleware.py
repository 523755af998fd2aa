import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("app.access")

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """
    Count every SQL statement issued on *engine* into ``query_count_var``.

    Must be called once per engine (production engine in ``database.py``,
    test engine in ``conftest.py``).
    """

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


class RequestLogMiddleware:
    """
    Pure ASGI middleware that logs one line per HTTP request and adds the
    ``X-Response-Time-Ms`` and ``X-Query-Count`` response headers.

    A pure ASGI class (not ``BaseHTTPMiddleware``) so the inner app runs in
    the same task and the query counter's ``ContextVar`` stays visible.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(query_count_var.get()).encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            logger.info(
                "%s %s -> %d (%.1f ms, %d queries)",
                scope["method"],
                scope["path"],
                status_code,
                (time.perf_counter() - start) * 1000,
                query_count_var.get(),
            )
