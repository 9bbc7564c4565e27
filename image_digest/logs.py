from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
PACKAGE_LOGGER = "image_digest"


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def ensure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging once from LOG_LEVEL. An explicit `level` (CLI --verbose)
    always applies to the package loggers, even when a host already configured logging.
    """
    resolved = _resolve_level(level or os.getenv("LOG_LEVEL", "INFO"))
    if level is not None:
        logging.getLogger(PACKAGE_LOGGER).setLevel(resolved)

    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=resolved, format=LOG_FORMAT)


@lru_cache(maxsize=1)
def service_logger() -> logging.Logger:
    """uvicorn/gunicorn error logger when hosted, the package logger otherwise."""
    for name in ("uvicorn.error", "gunicorn.error"):
        candidate = logging.getLogger(name)
        if candidate.hasHandlers():
            return candidate
    return logging.getLogger(PACKAGE_LOGGER)
