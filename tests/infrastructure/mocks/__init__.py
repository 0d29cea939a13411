"""Fakes standing in for camera hardware and the verification API."""

from tests.infrastructure.mocks.camera_mocks import (
    FRONT,
    REAR,
    FakeCameraBackend,
    FakeStream,
    ScriptedPayloads,
)
from tests.infrastructure.mocks.upload_mocks import FakeUploader

__all__ = [
    "FRONT",
    "REAR",
    "FakeCameraBackend",
    "FakeStream",
    "FakeUploader",
    "ScriptedPayloads",
]
