from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from fastapi import FastAPI

from devserve.core.config import Settings, settings
from devserve.core.logging import configure_logging
from devserve.main import create_app
from devserve.services.listener import BoundListener, UvicornListener, listen_with_retry

log = logging.getLogger(__name__)


class StartupError(RuntimeError):
    pass


async def start_http_listener(app: FastAPI, cfg: Settings) -> BoundListener:
    try:
        bound = await listen_with_retry(
            lambda: UvicornListener(app, host=cfg.host),
            cfg.port,
            max_attempts=cfg.port_max_attempts,
            step=cfg.port_step,
            label="HTTP server",
        )
    except Exception as e:
        raise StartupError(f"Unable to start HTTP server: {e}") from e
    log.info("HTTP server running at http://localhost:%s", bound.port)
    return bound


async def start_https_listener(app: FastAPI, cfg: Settings) -> BoundListener | None:
    """TLS is optional: every failure here is a warning, never fatal."""
    if not cfg.https_enabled:
        return None

    key_path, cert_path = Path(cfg.ssl_key_path), Path(cfg.ssl_cert_path)
    if not (key_path.is_file() and cert_path.is_file()):
        log.warning(
            "HTTPS requested but cert files not found. Expected: %s %s", key_path, cert_path
        )
        return None

    try:
        bound = await listen_with_retry(
            lambda: UvicornListener(
                app, host=cfg.host, ssl_keyfile=str(key_path), ssl_certfile=str(cert_path)
            ),
            cfg.ssl_port,
            max_attempts=cfg.port_max_attempts,
            step=cfg.port_step,
            label="HTTPS server",
        )
    except Exception as e:
        log.warning("Unable to start HTTPS server: %s", e)
        return None
    log.info("HTTPS server running at https://localhost:%s", bound.port)
    return bound


async def start_listeners(app: FastAPI, cfg: Settings) -> list[BoundListener]:
    listeners = [await start_http_listener(app, cfg)]
    https = await start_https_listener(app, cfg)
    if https is not None:
        listeners.append(https)
    return listeners


async def _serve_optional(bound: BoundListener, label: str) -> None:
    try:
        await bound.listener.serve()
    except Exception as e:
        log.warning("%s stopped: %s", label, e)


async def run(cfg: Settings | None = None) -> int:
    cfg = cfg or settings
    app = create_app(cfg)

    try:
        listeners = await start_listeners(app, cfg)
    except StartupError as e:
        log.error("%s", e)
        return 1

    http, *rest = listeners
    await asyncio.gather(
        http.listener.serve(),
        *(_serve_optional(b, "HTTPS server") for b in rest),
    )
    return 0


def main() -> None:
    configure_logging()
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
