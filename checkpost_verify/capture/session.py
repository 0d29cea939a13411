"""Confirmation photograph: live preview, flash delay, single JPEG still."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import cv2
import numpy as np

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.camera.resource import CameraHandle, CameraResource
from checkpost_verify.camera.types import (
    CameraAccessError,
    CameraErrorKind,
    DeviceLost,
    Facing,
    Frame,
    StreamConstraints,
)

JPEG_MIME = "image/jpeg"
DEFAULT_JPEG_QUALITY = 90
DEFAULT_FLASH_DELAY = 0.2
CAPTURE_CONSTRAINTS = StreamConstraints(resolution=(1920, 1080), fps=30.0)

Encoder = Callable[[np.ndarray, int], bytes]


@dataclass(frozen=True, eq=False)
class CapturedImage:
    """One encoded still. Compared by identity: a retake never equals the original."""

    data: bytes
    identifier: str
    mime_type: str = JPEG_MIME
    captured_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def filename(self) -> str:
        return f"{self.identifier}.jpg"


def encode_jpeg(image: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    quality = max(1, min(100, int(quality)))
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buffer.tobytes()


class CaptureSession:
    """Owns the capture camera between entering and leaving Capturing.

    ``capture`` may be called again after a failed attempt; the session holds no
    reference to an image once it has been returned.
    """

    def __init__(
        self,
        camera: CameraResource,
        identifier: str,
        *,
        facing: Optional[Facing] = Facing.ENVIRONMENT,
        constraints: Optional[StreamConstraints] = None,
        flash_delay: float = DEFAULT_FLASH_DELAY,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        encoder: Optional[Encoder] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._camera = camera
        self.identifier = identifier
        self._facing = facing
        self._constraints = constraints or CAPTURE_CONSTRAINTS
        self._flash_delay = max(0.0, flash_delay)
        self._jpeg_quality = jpeg_quality
        self._encoder = encoder or encode_jpeg
        self.logger = ensure_structured_logger(logger, component="CaptureSession", fallback_name=__name__)

        self._handle: Optional[CameraHandle] = None
        self._closed = False
        self._switching = False
        self.flashing = False
        self.last_frame: Optional[Frame] = None

    async def __aenter__(self) -> "CaptureSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def handle(self) -> Optional[CameraHandle]:
        handle = self._handle
        return handle if handle is not None and handle.is_live else None

    @property
    def is_ready(self) -> bool:
        return not self._closed and self.handle is not None

    async def open(self) -> None:
        if self._closed:
            raise RuntimeError("CaptureSession cannot be reopened; create a new one")
        self._handle = await self._camera.request_access(self._facing, self._constraints)
        self.logger.info("Capture preview ready for %s", self.identifier)

    async def refresh_preview(self) -> Optional[Frame]:
        """Read one preview frame; None once the session is no longer live."""
        handle = self.handle
        if handle is None or self._closed:
            return None
        try:
            frame = await handle.read_frame()
        except DeviceLost as exc:
            if self._closed or self._switching or self._handle is not handle:
                return None
            raise CameraAccessError(CameraErrorKind.UNAVAILABLE, f"Capture camera lost: {exc}") from exc
        self.last_frame = frame
        return frame

    async def run_preview(self, interval: float) -> None:
        while not self._closed:
            await self.refresh_preview()
            await asyncio.sleep(max(0.0, interval))

    async def capture(self) -> CapturedImage:
        handle = self.handle
        if handle is None or self._closed:
            raise RuntimeError("Capture camera is not ready")

        self.flashing = True
        try:
            if self._flash_delay > 0:
                await asyncio.sleep(self._flash_delay)
            try:
                frame = await handle.read_frame()
            except DeviceLost as exc:
                raise CameraAccessError(CameraErrorKind.UNAVAILABLE, f"Capture camera lost: {exc}") from exc
        finally:
            self.flashing = False

        data = await asyncio.to_thread(self._encoder, frame.data, self._jpeg_quality)
        image = CapturedImage(data=data, identifier=self.identifier, mime_type=JPEG_MIME)
        self.logger.info("Captured %s (%d bytes)", image.filename, image.size)
        return image

    async def switch_to(self, device_id: str) -> CameraHandle:
        if self._closed:
            raise RuntimeError("CaptureSession is closed")
        self._switching = True
        try:
            self._handle = await self._camera.switch_to(device_id)
        finally:
            self._switching = False
        self.last_frame = None
        return self._handle

    async def set_torch(self, on: bool) -> bool:
        return await self._camera.set_torch(self.handle, on)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.last_frame = None
        await self._camera.release(self._handle)


__all__ = [
    "CAPTURE_CONSTRAINTS",
    "CaptureSession",
    "CapturedImage",
    "DEFAULT_FLASH_DELAY",
    "DEFAULT_JPEG_QUALITY",
    "JPEG_MIME",
    "encode_jpeg",
]
