"""Centralized logging configuration for the Summary Hub application."""

from __future__ import annotations

import logging
import os
from logging import Logger
from pathlib import Path
from typing import Iterable, List, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL_ENV = "SUMMARY_HUB_LOG_LEVEL"

# Marks handlers installed here so a second configure call replaces them.
_OWNED_HANDLER_FLAG = "_summary_hub_owned"


def resolve_log_level(value: Optional[str] = None, default: int = logging.INFO) -> int:
    """Map a level name such as ``"debug"`` (or ``$SUMMARY_HUB_LOG_LEVEL``) to a level."""

    raw = value if value is not None else os.environ.get(LOG_LEVEL_ENV, "")
    raw = raw.strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def configure_logging(
    level: Optional[int] = None,
    *,
    handlers: Iterable[logging.Handler] | None = None,
) -> Logger:
    """Configure the root logger; repeated calls swap out the previous handlers."""

    logger = logging.getLogger()
    logger.setLevel(resolve_log_level() if level is None else level)

    for existing in list(logger.handlers):
        if getattr(existing, _OWNED_HANDLER_FLAG, False):
            logger.removeHandler(existing)
            existing.close()

    installed: List[logging.Handler]
    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        installed = [stream_handler]
    else:
        installed = list(handlers)

    for handler in installed:
        setattr(handler, _OWNED_HANDLER_FLAG, True)
        logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "summary_hub.log"


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "LOG_LEVEL_ENV",
    "configure_logging",
    "get_log_file_path",
    "resolve_log_level",
]
