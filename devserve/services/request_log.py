from __future__ import annotations

import logging
import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from devserve.web.errors import fault_status

log = logging.getLogger("devserve.access")


class RequestLogMiddleware:
    """Log `METHOD URL -> STATUS Nms` once the response is finished."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status: int | None = None

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            # Answered further out by the error handler, with this same status.
            if status is None:
                status = fault_status(exc)
            raise
        finally:
            ms = int((time.perf_counter() - start) * 1000)
            log.info("%s %s -> %s %dms", scope["method"], _request_url(scope), status or 500, ms)


def _request_url(scope: Scope) -> str:
    path = scope.get("root_path", "") + scope["path"]
    query = scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path
