"""Where the client looks for its config file and writes its logs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

CONFIG_FILENAME = "config.txt"

# Per-user state; CHECKPOST_STATE_DIR overrides it (kiosk images, tests)
_USER_STATE_ENV = os.environ.get("CHECKPOST_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".checkpost_verify")
LOGS_DIR = USER_STATE_DIR / "logs"
DEFAULT_LOG_FILE = LOGS_DIR / "checkpost.log"


def config_candidates() -> list:
    """The working directory's config.txt first, then the one in user state."""
    return [Path.cwd() / CONFIG_FILENAME, USER_STATE_DIR / CONFIG_FILENAME]


def find_config_file(candidates: Optional[Iterable[Path]] = None) -> Path:
    """First candidate that exists, else the first candidate (read as defaults)."""
    paths = list(candidates) if candidates is not None else config_candidates()
    for path in paths:
        if path.is_file():
            return path
    return paths[0]


def ensure_directories() -> None:
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


__all__ = [
    "CONFIG_FILENAME",
    "DEFAULT_LOG_FILE",
    "LOGS_DIR",
    "USER_STATE_DIR",
    "config_candidates",
    "ensure_directories",
    "find_config_file",
]
