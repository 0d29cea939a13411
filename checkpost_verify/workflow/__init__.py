"""Checkpoint verification workflow state machine."""

from .controller import WorkflowController
from .settings import WorkflowSettings
from .state import (
    CameraError,
    Capturing,
    Idle,
    Phase,
    Reviewing,
    ScanConfirmed,
    Scanning,
    UploadFailed,
    Uploading,
    Verified,
    ViewFlags,
    WorkflowState,
)

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
    "WorkflowController",
    "WorkflowSettings",
    "WorkflowState",
]
