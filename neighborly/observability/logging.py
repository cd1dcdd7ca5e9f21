"""
Logger factory for the neighborly package.

All package loggers hang off the "neighborly" namespace logger, which gets one
stderr handler the first time any module asks for a logger. Stdout stays free
for CLI output (JSON reports, preview paths).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Final

PACKAGE_LOGGER: Final[str] = "neighborly"
_FORMAT: Final[str] = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# HTTP and Google client libraries are chatty at INFO
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("urllib3", "httpx", "google", "grpc")

_configured: bool = False


def _level_from_env() -> int:
    name = os.getenv("NEIGHBORLY_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure(level: int) -> None:
    global _configured

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the neighborly namespace, configuring it on first use."""
    if not _configured:
        _configure(_level_from_env())

    if name != PACKAGE_LOGGER and not name.startswith(f"{PACKAGE_LOGGER}."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
