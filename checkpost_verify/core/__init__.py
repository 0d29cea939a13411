from .logging_utils import LoggerLike, StructuredLogger, ensure_structured_logger, get_module_logger
from .logging_config import configure_logging, parse_level
from .tasks import TaskManager

__all__ = [
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
    "configure_logging",
    "parse_level",
    "TaskManager",
]
