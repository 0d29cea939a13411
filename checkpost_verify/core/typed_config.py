"""Type coercion helpers for building settings from parsed config values."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, TypeVar

N = TypeVar("N", int, float)


def _clamp(value: N, min_value: Optional[N], max_value: Optional[N]) -> N:
    if min_value is not None and value < min_value:
        return min_value
    if max_value is not None and value > max_value:
        return max_value
    return value


def get_str(data: Mapping[str, Any], key: str, default: str) -> str:
    val = data.get(key)
    if val is None:
        return default
    text = str(val).strip()
    return text if text else default


def get_int(
    data: Mapping[str, Any],
    key: str,
    default: int,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> int:
    val = data.get(key)
    if val is None or isinstance(val, bool):
        return default
    try:
        return _clamp(int(val), min_value, max_value)
    except (ValueError, TypeError):
        try:
            return _clamp(int(float(val)), min_value, max_value)
        except (ValueError, TypeError):
            return default


def get_float(
    data: Mapping[str, Any],
    key: str,
    default: float,
    *,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> float:
    val = data.get(key)
    if val is None or isinstance(val, bool):
        return default
    try:
        return _clamp(float(val), min_value, max_value)
    except (ValueError, TypeError):
        return default


def get_bool(data: Mapping[str, Any], key: str, default: bool) -> bool:
    val = data.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"true", "1", "yes", "on"}


def get_path(data: Mapping[str, Any], key: str, default: Optional[Path]) -> Optional[Path]:
    val = data.get(key)
    if val is None:
        return default
    text = str(val).strip()
    return Path(text).expanduser() if text else default


__all__ = ["get_str", "get_int", "get_float", "get_bool", "get_path"]
