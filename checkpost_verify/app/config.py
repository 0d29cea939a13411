"""config.txt loading and the application settings built from it."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from checkpost_verify.core.logging_utils import get_module_logger
from checkpost_verify.core.paths import DEFAULT_LOG_FILE, find_config_file
from checkpost_verify.core.typed_config import get_bool, get_float, get_int, get_path, get_str
from checkpost_verify.upload.uploader import DEFAULT_API_BASE_URL, DEFAULT_VERIFY_PATH
from checkpost_verify.workflow.settings import WorkflowSettings

logger = get_module_logger(__name__)

TOKEN_ENV_VAR = "CHECKPOST_TOKEN"

KNOWN_KEYS = frozenset(
    {
        "preferred_facing",
        "scan_width",
        "scan_height",
        "capture_width",
        "capture_height",
        "capture_fps",
        "decode_rate_hz",
        "scan_window_width",
        "scan_window_height",
        "confirm_delay",
        "capture_flash_delay",
        "jpeg_quality",
        "api_base_url",
        "verify_path",
        "upload_timeout",
        "auth_token",
        "log_level",
        "log_file",
        "log_frames",
        "max_probe",
    }
)


class ConfigLoader:
    """Reads ``key = value`` lines; ``#`` starts a comment, values may be quoted."""

    @staticmethod
    def load(config_path: Path) -> Dict[str, str]:
        config: Dict[str, str] = {}
        if not config_path.exists():
            logger.debug("Config file not found at %s, using defaults", config_path)
            return config

        logger.debug("Loading config from: %s", config_path)
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" not in line:
                        logger.warning("Invalid config line %d (missing '='): %s", line_num, line)
                        continue

                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = ConfigLoader._clean_value(value)

                    if key not in KNOWN_KEYS:
                        logger.warning("Unknown config key '%s' (line %d) - ignored", key, line_num)
                        continue
                    config[key] = value
        except OSError as e:
            logger.error("Failed to load config file: %s", e)
            return {}

        logger.info("Loaded config from %s (%d values)", config_path, len(config))
        return config

    @staticmethod
    def _clean_value(value: str) -> str:
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            return value[1:-1]
        if "#" in value:
            value = value.split("#", 1)[0].strip()
        return value


@dataclass(frozen=True)
class ApiSettings:
    base_url: str = DEFAULT_API_BASE_URL
    verify_path: str = DEFAULT_VERIFY_PATH
    upload_timeout: float = 0.0  # 0 = no timeout
    auth_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ApiSettings":
        defaults = cls()
        token = get_str(data, "auth_token", "") or os.environ.get(TOKEN_ENV_VAR, "").strip()
        return cls(
            base_url=get_str(data, "api_base_url", defaults.base_url),
            verify_path=get_str(data, "verify_path", defaults.verify_path),
            upload_timeout=get_float(data, "upload_timeout", defaults.upload_timeout, min_value=0.0),
            auth_token=token or None,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "api_base_url": self.base_url,
            "verify_path": self.verify_path,
            "upload_timeout": str(self.upload_timeout),
        }


@dataclass(frozen=True)
class AppSettings:
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    log_level: str = "INFO"
    log_file: Optional[Path] = DEFAULT_LOG_FILE
    log_frames: bool = False
    max_probe: int = 4

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AppSettings":
        defaults = cls()
        log_file = defaults.log_file
        raw_log_file = get_str(data, "log_file", "")
        if raw_log_file.lower() in ("none", "off", "false"):
            log_file = None
        elif raw_log_file:
            log_file = get_path(data, "log_file", defaults.log_file)
        return cls(
            workflow=WorkflowSettings.from_mapping(data),
            api=ApiSettings.from_mapping(data),
            log_level=get_str(data, "log_level", defaults.log_level).upper(),
            log_file=log_file,
            log_frames=get_bool(data, "log_frames", defaults.log_frames),
            max_probe=get_int(data, "max_probe", defaults.max_probe, min_value=1),
        )

    def to_dict(self) -> Dict[str, str]:
        data = dict(self.workflow.to_dict())
        data.update(self.api.to_dict())
        data["log_level"] = self.log_level
        data["log_file"] = str(self.log_file) if self.log_file else "none"
        data["log_frames"] = "true" if self.log_frames else "false"
        data["max_probe"] = str(self.max_probe)
        return data


def load_settings(
    config_path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> AppSettings:
    """File values, then non-None ``overrides`` (command line) on top.

    Without ``config_path`` the file is looked up with :func:`find_config_file`.
    """
    data: Dict[str, Any] = ConfigLoader.load(config_path or find_config_file())
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return AppSettings.from_mapping(data)


__all__ = [
    "ApiSettings",
    "AppSettings",
    "ConfigLoader",
    "KNOWN_KEYS",
    "TOKEN_ENV_VAR",
    "load_settings",
]
