"""
Centralized logging configuration for the ``gull_ledger`` package.

``configure_logging()`` attaches a single ``StreamHandler`` to the package
root logger and is called once by the application entry point.
``get_logger(name)`` is what library modules use; they never attach
handlers of their own.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

from gull_ledger.config import get_settings

_PKG_LOGGER_NAME = "gull_ledger"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if level is None:
        level = get_settings().LOG_LEVEL
    level = level.strip().upper()
    if level.isdigit():
        return int(level)
    numeric = getattr(logging, level, None)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package root logger exactly once."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)

    # Drop the library NullHandler so records are not swallowed
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(_parse_level(level))
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the package namespace."""
    root = logging.getLogger(_PKG_LOGGER_NAME)
    if not root.handlers:
        root.addHandler(logging.NullHandler())

    if not name:
        return root
    if name == _PKG_LOGGER_NAME or name.startswith(_PKG_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_PKG_LOGGER_NAME}.{name}")
