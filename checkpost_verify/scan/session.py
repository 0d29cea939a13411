"""One scan: camera + decoder + validator until the first accepted identifier."""

from __future__ import annotations

import asyncio
from typing import Optional

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.camera.resource import CameraHandle, CameraResource
from checkpost_verify.camera.types import (
    CameraAccessError,
    CameraErrorKind,
    Facing,
    Frame,
    StreamConstraints,
)
from checkpost_verify.scan.decoder import CodeDecoder, DecodeStream, ScanWindow
from checkpost_verify.scan.validator import validate


class ScanSession:
    """Produces exactly one identifier, then stops decoding.

    Use as an async context manager so the camera is released on every exit
    path, including task cancellation.
    """

    def __init__(
        self,
        camera: CameraResource,
        decoder: CodeDecoder,
        *,
        facing: Optional[Facing] = Facing.ENVIRONMENT,
        constraints: Optional[StreamConstraints] = None,
        scan_window: Optional[ScanWindow] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._camera = camera
        self._decoder = decoder
        self._facing = facing
        self._constraints = constraints or StreamConstraints()
        self._scan_window = scan_window
        self.logger = ensure_structured_logger(logger, component="ScanSession", fallback_name=__name__)
        self._frame_log = self.logger.frames()

        self._handle: Optional[CameraHandle] = None
        self._stream: Optional[DecodeStream] = None
        self._switch_lock = asyncio.Lock()
        self._stream_ready = asyncio.Event()
        self._stream_ready.set()
        self._switch_error: Optional[CameraAccessError] = None
        self._latched = False
        self._closed = False

        self.payload_count = 0
        self.rejected_count = 0

    async def __aenter__(self) -> "ScanSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Properties

    @property
    def handle(self) -> Optional[CameraHandle]:
        handle = self._handle
        return handle if handle is not None and handle.is_live else None

    @property
    def is_open(self) -> bool:
        return self.handle is not None and not self._closed

    @property
    def latched(self) -> bool:
        return self._latched

    @property
    def scan_window(self) -> Optional[ScanWindow]:
        return self._scan_window

    def latest_frame(self) -> Optional[Frame]:
        stream = self._stream
        return stream.last_frame if stream is not None else None

    # ------------------------------------------------------------------
    # Lifecycle

    async def open(self) -> None:
        if self._closed:
            raise RuntimeError("ScanSession cannot be reopened; create a new one")
        self._handle = await self._camera.request_access(self._facing, self._constraints)
        try:
            self._stream = self._decoder.start(self._handle, self._scan_window)
        except CameraAccessError:
            handle, self._handle = self._handle, None
            await self._camera.release(handle)
            raise
        self.logger.info("Scanning on %s", self._handle.device.label or self._handle.device.device_id)

    async def next_identifier(self) -> str:
        """Consume decode attempts until one validates; later payloads are never read."""

        if self._stream is None:
            raise RuntimeError("ScanSession.open() must be awaited first")
        while True:
            stream = self._stream
            async for payload in stream:
                if payload is None:
                    continue
                self.payload_count += 1
                identifier = validate(payload)
                if identifier is None:
                    self.rejected_count += 1
                    self._frame_log.debug("Ignoring payload with unexpected format: %r", payload[:64])
                    continue
                self._latched = True
                await self._decoder.stop(stream)
                self.logger.info("Accepted identifier %s after %d payload(s)", identifier, self.payload_count)
                return identifier

            # Stream ended: either a camera switch replaced it or it was stopped under us.
            await self._stream_ready.wait()
            if self._switch_error is not None:
                raise self._switch_error
            if self._stream is stream:
                raise CameraAccessError(CameraErrorKind.UNAVAILABLE, "Decoding stopped unexpectedly")

    async def switch_camera(self, device_id: str) -> CameraHandle:
        """Move decoding to another device; no frames from the old one are decoded afterwards."""

        async with self._switch_lock:
            if self._closed:
                raise RuntimeError("ScanSession is closed")
            self._stream_ready.clear()
            try:
                await self._decoder.stop(self._stream)
                self._handle = await self._camera.switch_to(device_id)
                self._stream = self._decoder.start(self._handle, self._scan_window)
            except CameraAccessError as exc:
                self._switch_error = exc
                raise
            finally:
                self._stream_ready.set()
            return self._handle

    async def set_torch(self, on: bool) -> bool:
        return await self._camera.set_torch(self.handle, on)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._decoder.stop(self._stream)
        finally:
            await self._camera.release(self._handle)
            self.logger.debug("Scan session closed (payloads=%d rejected=%d)", self.payload_count, self.rejected_count)


__all__ = ["ScanSession"]
