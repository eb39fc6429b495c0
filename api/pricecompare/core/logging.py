from __future__ import annotations

import logging
import sys

from .config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging() -> None:
    settings = get_settings()
    log_level = logging.DEBUG if settings.environment != "production" else logging.INFO

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # httpx logs every request line at INFO; keep it to warnings outside debugging
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))


__all__ = ["configure_logging"]
