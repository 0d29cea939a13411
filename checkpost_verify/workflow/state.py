"""Workflow state variants and the UI flags derived from them.

Every variant is compared by identity: the controller hands the instance it
expected to background work, and a result only applies while that exact
instance is still current.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import ClassVar, Optional

from checkpost_verify.camera.types import CameraErrorKind
from checkpost_verify.capture.session import CapturedImage
from checkpost_verify.upload.uploader import UploadResult


class Phase(Enum):
    """Workflow phase."""

    IDLE = auto()
    SCANNING = auto()
    SCAN_CONFIRMED = auto()
    CAPTURING = auto()
    REVIEWING = auto()
    UPLOADING = auto()
    VERIFIED = auto()
    UPLOAD_FAILED = auto()
    CAMERA_ERROR = auto()


@dataclass(frozen=True, eq=False)
class WorkflowState:
    phase: ClassVar[Phase]

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, eq=False)
class Idle(WorkflowState):
    phase: ClassVar[Phase] = Phase.IDLE


@dataclass(frozen=True, eq=False)
class Scanning(WorkflowState):
    phase: ClassVar[Phase] = Phase.SCANNING


@dataclass(frozen=True, eq=False)
class ScanConfirmed(WorkflowState):
    phase: ClassVar[Phase] = Phase.SCAN_CONFIRMED

    identifier: str
    scanned_at: float = field(default_factory=time.time)
    scan_count: int = 1


@dataclass(frozen=True, eq=False)
class Capturing(WorkflowState):
    phase: ClassVar[Phase] = Phase.CAPTURING

    identifier: str


@dataclass(frozen=True, eq=False)
class Reviewing(WorkflowState):
    phase: ClassVar[Phase] = Phase.REVIEWING

    identifier: str
    image: CapturedImage


@dataclass(frozen=True, eq=False)
class Uploading(WorkflowState):
    phase: ClassVar[Phase] = Phase.UPLOADING

    identifier: str
    image: CapturedImage


@dataclass(frozen=True, eq=False)
class Verified(WorkflowState):
    phase: ClassVar[Phase] = Phase.VERIFIED

    identifier: str
    result: UploadResult


@dataclass(frozen=True, eq=False)
class UploadFailed(WorkflowState):
    phase: ClassVar[Phase] = Phase.UPLOAD_FAILED

    identifier: str
    image: CapturedImage
    result: UploadResult


@dataclass(frozen=True, eq=False)
class CameraError(WorkflowState):
    phase: ClassVar[Phase] = Phase.CAMERA_ERROR

    kind: CameraErrorKind
    message: str = ""


@dataclass(frozen=True)
class ViewFlags:
    """What the operator view may show and enable for one state."""

    scanning_active: bool = False
    camera_owned: bool = False
    can_capture: bool = False
    can_retake: bool = False
    can_confirm: bool = False
    can_retry: bool = False
    can_cancel: bool = False
    can_cancel_upload: bool = False
    can_restart: bool = False
    is_uploading: bool = False
    upload_success: bool = False
    upload_error: Optional[str] = None
    show_error_panel: bool = False
    message: str = ""

    @classmethod
    def from_state(cls, state: WorkflowState, camera_ready: bool = False) -> "ViewFlags":
        if isinstance(state, Scanning):
            return cls(
                scanning_active=True,
                camera_owned=camera_ready,
                message="Point the camera at the vehicle QR code",
            )
        if isinstance(state, ScanConfirmed):
            return cls(message=f"Scanned vehicle {state.identifier}")
        if isinstance(state, Capturing):
            return cls(
                camera_owned=camera_ready,
                can_capture=camera_ready,
                can_cancel=True,
                message=f"Take a photo of vehicle {state.identifier}" if camera_ready else "Opening camera",
            )
        if isinstance(state, Reviewing):
            return cls(
                can_retake=True,
                can_confirm=True,
                message=f"Check the photo of vehicle {state.identifier}",
            )
        if isinstance(state, Uploading):
            return cls(
                can_cancel_upload=True,
                is_uploading=True,
                message=f"Uploading verification for {state.identifier}",
            )
        if isinstance(state, Verified):
            return cls(
                can_restart=True,
                upload_success=True,
                message=f"Vehicle {state.identifier} verified",
            )
        if isinstance(state, UploadFailed):
            detail = state.result.detail or "Upload failed"
            return cls(
                can_retake=True,
                can_retry=True,
                upload_error=detail,
                message=f"Upload failed: {detail}",
            )
        if isinstance(state, CameraError):
            return cls(
                can_restart=True,
                show_error_panel=True,
                message=state.message,
            )
        return cls(message="Starting camera")


__all__ = [
    "CameraError",
    "Capturing",
    "Idle",
    "Phase",
    "Reviewing",
    "ScanConfirmed",
    "Scanning",
    "UploadFailed",
    "Uploading",
    "Verified",
    "ViewFlags",
    "WorkflowState",
]
