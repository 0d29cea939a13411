"""Camera access: platform backends and the exclusive CameraResource."""

from .types import (
    CameraAccessError,
    CameraBackend,
    CameraBusyError,
    CameraDevice,
    CameraErrorKind,
    CameraPermissionState,
    CameraStream,
    DeviceLost,
    Facing,
    Frame,
    StreamConstraints,
    TorchUnsupportedError,
)
from .resource import CameraHandle, CameraResource

__all__ = [
    "CameraAccessError",
    "CameraBackend",
    "CameraBusyError",
    "CameraDevice",
    "CameraErrorKind",
    "CameraHandle",
    "CameraPermissionState",
    "CameraResource",
    "CameraStream",
    "DeviceLost",
    "Facing",
    "Frame",
    "StreamConstraints",
    "TorchUnsupportedError",
]
