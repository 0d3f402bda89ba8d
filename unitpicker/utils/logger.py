"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from unitpicker.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured_level: Optional[int] = None


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler on first use.

    Later calls only matter when they pass an explicit level, e.g. an app
    built with its own ``Settings``; they adjust the root level in place.
    """

    global _configured_level
    resolved = _resolve_level(level or get_settings().log_level)
    if _configured_level is None:
        logging.basicConfig(level=resolved, format=LOG_FORMAT, stream=sys.stdout)
    elif level is None or resolved == _configured_level:
        return
    else:
        logging.getLogger().setLevel(resolved)
    _configured_level = resolved


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
