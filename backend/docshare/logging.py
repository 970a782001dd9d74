"""Shared logging helpers."""

from __future__ import annotations

import logging
from typing import Optional

from docshare.config import settings

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def _level_from_settings() -> int:
    name = settings.LOG_LEVEL.strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Optional[int] = None, *, fmt: Optional[str] = None) -> None:
    """Ensure root logger is configured once."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    logging.basicConfig(level=level or _level_from_settings(), format=fmt or _DEFAULT_FORMAT)
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return configured logger for a module."""
    setup_logging()
    return logging.getLogger(name)
