from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from devserve.web.router import index_or_not_found, not_found, wants_html

log = logging.getLogger(__name__)


def internal_error(status_code: int = 500) -> JSONResponse:
    return JSONResponse({"error": "Internal Server Error"}, status_code=status_code)


def fault_status(exc: Exception) -> int:
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if isinstance(status, int) and 400 <= status <= 599:
        return status
    return 500


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    # Nothing matched (no route, no static file, or wrong method on a static path).
    if exc.status_code in (404, 405):
        if wants_html(request):
            return index_or_not_found(request)
        return not_found()
    return internal_error(exc.status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    log.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return internal_error(fault_status(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
