"""Camera data types, backend protocols, and errors."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, Sequence, Tuple, runtime_checkable


class Facing(Enum):
    """Which way a camera points relative to the operator."""

    ENVIRONMENT = "environment"
    USER = "user"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object, default: "Facing" = None) -> "Facing":
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return default if default is not None else cls.UNKNOWN


class CameraPermissionState(Enum):
    UNKNOWN = "unknown"
    REQUESTING = "requesting"
    GRANTED = "granted"
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class CameraErrorKind(Enum):
    """Why camera access failed."""

    DENIED = "denied"  # operator or platform refused
    UNAVAILABLE = "unavailable"  # no device, or it could not be opened / was lost
    UNSUPPORTED = "unsupported"  # no camera API on this platform


class CameraAccessError(Exception):
    """Camera could not be acquired or was lost; fatal to the current session."""

    def __init__(self, kind: CameraErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"CameraAccessError({self.kind.name}, {self.message!r})"


_DEFAULT_MESSAGES = {
    CameraErrorKind.DENIED: "Camera access was denied. Please check camera permissions.",
    CameraErrorKind.UNAVAILABLE: "No camera found on this device.",
    CameraErrorKind.UNSUPPORTED: "This platform does not provide camera access.",
}


class CameraBusyError(RuntimeError):
    """Raised when acquiring while another handle is still live."""


class DeviceLost(Exception):
    """Raised when a stream disappears or a released handle is read."""


class TorchUnsupportedError(Exception):
    """The active device has no controllable light."""


@dataclass(frozen=True)
class CameraDevice:
    device_id: str
    label: str = ""
    facing: Facing = Facing.UNKNOWN


@dataclass(frozen=True)
class StreamConstraints:
    """Resolution/fps hints used when opening a stream."""

    resolution: Tuple[int, int] = (640, 480)
    fps: float = 30.0


@dataclass(frozen=True)
class Frame:
    data: Any  # numpy.ndarray, BGR
    timestamp: float
    frame_number: int


@runtime_checkable
class CameraStream(Protocol):
    """One open stream on one physical device."""

    @property
    def torch_supported(self) -> bool: ...

    async def read_frame(self) -> Frame: ...

    async def set_torch(self, on: bool) -> None: ...

    async def stop(self) -> None: ...


@runtime_checkable
class CameraBackend(Protocol):
    """Platform camera API consumed by CameraResource."""

    async def check_access(self) -> None:
        """Raise CameraAccessError if the platform refuses or lacks cameras."""
        ...

    async def list_devices(self) -> Sequence[CameraDevice]: ...

    async def open_stream(self, device: CameraDevice, constraints: StreamConstraints) -> CameraStream: ...


def pick_device(devices: Sequence[CameraDevice], preferred: Optional[Facing]) -> Optional[CameraDevice]:
    """First device facing ``preferred``, otherwise the first device."""
    if not devices:
        return None
    if preferred is not None and preferred is not Facing.UNKNOWN:
        for device in devices:
            if device.facing is preferred:
                return device
    return devices[0]


__all__ = [
    "Facing",
    "CameraPermissionState",
    "CameraErrorKind",
    "CameraAccessError",
    "CameraBusyError",
    "DeviceLost",
    "TorchUnsupportedError",
    "CameraDevice",
    "StreamConstraints",
    "Frame",
    "CameraStream",
    "CameraBackend",
    "pick_device",
]
