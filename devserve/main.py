from __future__ import annotations

import logging
from pathlib import Path

import httpx
from fastapi import FastAPI

from devserve.api.router import api_router
from devserve.core.config import Settings, settings as default_settings
from devserve.services.proxy import ProxyMiddleware
from devserve.services.request_log import RequestLogMiddleware
from devserve.web.errors import register_error_handlers
from devserve.web.router import router as web_router
from devserve.web.static import PublicFiles


def create_app(
    settings: Settings | None = None,
    *,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the request pipeline once; every listener serves this same app."""
    settings = settings or default_settings
    log = logging.getLogger("devserve")

    app = FastAPI(
        title="devserve",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings

    app.include_router(api_router)
    app.include_router(web_router)

    # Mounted last so /health and / win; misses fall through to the 404 handler,
    # which also does the HTML fallback.
    public_dir = Path(settings.public_dir)
    if not public_dir.is_dir():
        log.warning(
            "Static directory %s not found; static files are served once it exists", public_dir
        )
    app.mount("/", PublicFiles(str(public_dir)), name="public")

    register_error_handlers(app)

    # Last added runs first: the request log wraps the proxy.
    if settings.proxy_enabled:
        app.add_middleware(
            ProxyMiddleware,
            prefix=settings.proxy_prefix,
            target=settings.proxy_target_url,
            timeout=settings.proxy_timeout_sec,
            verify=settings.proxy_verify_ssl,
            transport=upstream_transport,
        )
        log.info("Proxying %s* -> %s", settings.proxy_prefix, settings.proxy_target)
    app.add_middleware(RequestLogMiddleware)

    return app
