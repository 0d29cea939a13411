"""Workflow tuning - immutable."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from checkpost_verify.core.typed_config import get_float, get_int
from checkpost_verify.camera.types import Facing, StreamConstraints
from checkpost_verify.scan.decoder import ScanWindow


@dataclass(frozen=True)
class WorkflowSettings:
    preferred_facing: Facing = Facing.ENVIRONMENT
    scan_resolution: Tuple[int, int] = (640, 480)
    capture_resolution: Tuple[int, int] = (1920, 1080)
    capture_fps: float = 30.0
    decode_rate_hz: float = 10.0
    scan_window_size: Tuple[int, int] = (250, 250)
    confirm_delay: float = 1.0  # seconds the confirmation is shown before capture
    capture_flash_delay: float = 0.2
    jpeg_quality: int = 90

    @property
    def scan_constraints(self) -> StreamConstraints:
        return StreamConstraints(resolution=self.scan_resolution, fps=self.capture_fps)

    @property
    def capture_constraints(self) -> StreamConstraints:
        return StreamConstraints(resolution=self.capture_resolution, fps=self.capture_fps)

    @property
    def scan_window(self) -> ScanWindow:
        return ScanWindow(*self.scan_window_size)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "WorkflowSettings":
        """Build from parsed config values; anything missing or malformed keeps its default."""
        defaults = cls()
        return cls(
            preferred_facing=Facing.parse(data.get("preferred_facing"), defaults.preferred_facing),
            scan_resolution=(
                get_int(data, "scan_width", defaults.scan_resolution[0], min_value=1),
                get_int(data, "scan_height", defaults.scan_resolution[1], min_value=1),
            ),
            capture_resolution=(
                get_int(data, "capture_width", defaults.capture_resolution[0], min_value=1),
                get_int(data, "capture_height", defaults.capture_resolution[1], min_value=1),
            ),
            capture_fps=get_float(data, "capture_fps", defaults.capture_fps, min_value=1.0),
            decode_rate_hz=get_float(data, "decode_rate_hz", defaults.decode_rate_hz, min_value=0.0),
            scan_window_size=(
                get_int(data, "scan_window_width", defaults.scan_window_size[0], min_value=1),
                get_int(data, "scan_window_height", defaults.scan_window_size[1], min_value=1),
            ),
            confirm_delay=get_float(data, "confirm_delay", defaults.confirm_delay, min_value=0.0),
            capture_flash_delay=get_float(data, "capture_flash_delay", defaults.capture_flash_delay, min_value=0.0),
            jpeg_quality=get_int(data, "jpeg_quality", defaults.jpeg_quality, min_value=1, max_value=100),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "preferred_facing": self.preferred_facing.value,
            "scan_width": str(self.scan_resolution[0]),
            "scan_height": str(self.scan_resolution[1]),
            "capture_width": str(self.capture_resolution[0]),
            "capture_height": str(self.capture_resolution[1]),
            "capture_fps": str(self.capture_fps),
            "decode_rate_hz": str(self.decode_rate_hz),
            "scan_window_width": str(self.scan_window_size[0]),
            "scan_window_height": str(self.scan_window_size[1]),
            "confirm_delay": str(self.confirm_delay),
            "capture_flash_delay": str(self.capture_flash_delay),
            "jpeg_quality": str(self.jpeg_quality),
        }


__all__ = ["WorkflowSettings"]
