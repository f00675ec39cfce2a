from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, JSONResponse, Response

router = APIRouter()

INDEX_DOCUMENT = "index.html"


def index_path(request: Request) -> Path:
    return Path(request.app.state.settings.public_dir) / INDEX_DOCUMENT


def not_found() -> JSONResponse:
    return JSONResponse({"error": "Not found"}, status_code=404)


def index_or_not_found(request: Request) -> Response:
    path = index_path(request)
    if path.is_file():
        return FileResponse(path)
    return not_found()


def wants_html(request: Request) -> bool:
    """Client-side routing fallback applies to plain GETs from browsers."""
    return request.method == "GET" and "text/html" in request.headers.get("accept", "")


@router.get("/", include_in_schema=False)
async def index(request: Request) -> Response:
    return index_or_not_found(request)
