from __future__ import annotations

import logging
import sys

from devserve.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Route our loggers and uvicorn's through one stderr handler."""
    lvl = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=lvl, format=LOG_FORMAT, stream=sys.stderr, force=True)

    # uvicorn is started with log_config=None, so its loggers just propagate.
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).setLevel(lvl)
    # Replaced by RequestLogMiddleware.
    logging.getLogger("uvicorn.access").disabled = True
