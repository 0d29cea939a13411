"""Root logging setup for the operator client."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional, Union

from .logging_utils import FRAME_LOGGER_NAME

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUPS = 3

# Request and image-plugin chatter; only their errors reach the log.
QUIET_LOGGERS = ("aiohttp", "PIL")

_OWNED = "_checkpost_owned"


def parse_level(level: Union[int, str]) -> int:
    """``"debug"``, ``" Warn "``, ``logging.ERROR`` and the like to a level number."""
    if isinstance(level, int):
        return level
    name = str(level).strip().upper()
    if name == "WARN":
        name = "WARNING"
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{level}'")
    return value


def _add_handler(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    setattr(handler, _OWNED, True)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
    root.addHandler(handler)


def owned_handlers() -> list:
    return [h for h in logging.getLogger().handlers if getattr(h, _OWNED, False)]


def configure_logging(
    level: Union[int, str] = "INFO",
    *,
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
    trace_frames: bool = False,
    quiet_loggers: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """Install the console and rotating-file handlers on the root logger.

    Calling again replaces the handlers a previous call installed and leaves
    any other root handlers in place. Per-frame decode messages are held at
    INFO or above unless ``trace_frames`` is set.
    """
    numeric = parse_level(level)
    root = logging.getLogger()

    for handler in owned_handlers():
        root.removeHandler(handler)
        handler.close()

    if console:
        _add_handler(root, logging.StreamHandler(sys.stdout), numeric)
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _add_handler(
            root,
            RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"),
            numeric,
        )

    root.setLevel(numeric)
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.ERROR)
    frames = logging.getLogger(FRAME_LOGGER_NAME)
    frames.setLevel(logging.NOTSET if trace_frames else max(numeric, logging.INFO))


__all__ = [
    "LOG_DATEFMT",
    "LOG_FORMAT",
    "QUIET_LOGGERS",
    "configure_logging",
    "owned_handlers",
    "parse_level",
]
