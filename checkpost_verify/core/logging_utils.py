"""Component-tagged loggers under the ``checkpost_verify`` namespace."""

from __future__ import annotations

import logging
from typing import Optional, Union

NAMESPACE = "checkpost_verify"

# Per-frame decode chatter goes here so it can be held back independently.
FRAME_LOGGER_NAME = f"{NAMESPACE}.frames"


def _qualify(name: Optional[str]) -> str:
    if not name or name == NAMESPACE:
        return NAMESPACE
    if name.startswith(NAMESPACE + "."):
        return name
    return f"{NAMESPACE}.{name}"


def _component_for(name: str) -> str:
    tail = name.rsplit(".", 1)[-1]
    return "Core" if tail == NAMESPACE else tail


class StructuredLogger(logging.LoggerAdapter):
    """Adapter that writes ``[component] message`` to the wrapped logger."""

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        super().__init__(logger, {})
        self.component = component or _component_for(logger.name)

    def process(self, msg, kwargs):
        return f"[{self.component}] {msg}", kwargs

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(self.logger.getChild(suffix), f"{self.component}.{suffix}")

    def frames(self) -> "StructuredLogger":
        """Same component, written to the per-frame logger."""
        return StructuredLogger(logging.getLogger(FRAME_LOGGER_NAME), self.component)


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Wrap ``logger``; with no logger, use ``fallback_name`` under the namespace."""
    if isinstance(logger, StructuredLogger):
        if component is None or component == logger.component:
            return logger
        return StructuredLogger(logger.logger, component)
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    if logger is None:
        logger = logging.getLogger(_qualify(fallback_name))
    return StructuredLogger(logger, component)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(_qualify(name)))


__all__ = [
    "FRAME_LOGGER_NAME",
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
