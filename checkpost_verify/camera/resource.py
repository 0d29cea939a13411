"""Exclusive, revocable ownership of one camera stream."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import List, Optional

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.camera.types import (
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
    pick_device,
)


class CameraHandle:
    """A live stream bound to one physical device.

    Reads are serialised so a release or switch never interleaves with a frame
    read in flight. Once released, every read raises ``DeviceLost``.
    """

    def __init__(self, device: CameraDevice, constraints: StreamConstraints, stream: CameraStream) -> None:
        self.device = device
        self.constraints = constraints
        self._stream = stream
        self._lock = asyncio.Lock()
        self._live = True
        self.torch_on = False

    def __repr__(self) -> str:
        state = "live" if self._live else "released"
        return f"CameraHandle({self.device.device_id!r}, {state})"

    @property
    def is_live(self) -> bool:
        return self._live

    @property
    def torch_supported(self) -> bool:
        return self._live and bool(self._stream.torch_supported)

    async def read_frame(self) -> Frame:
        async with self._lock:
            if not self._live:
                raise DeviceLost(f"Handle for {self.device.device_id} was released")
            return await self._stream.read_frame()

    async def _set_torch(self, on: bool) -> None:
        async with self._lock:
            if not self._live:
                return
            await self._stream.set_torch(on)
            self.torch_on = on

    async def _close(self) -> bool:
        async with self._lock:
            if not self._live:
                return False
            self._live = False
            self.torch_on = False
            await self._stream.stop()
            return True


class CameraResource:
    """Owns at most one live CameraHandle at a time.

    One instance is created per workflow and passed in explicitly; callers
    must ``release`` before the next ``request_access``.
    """

    def __init__(self, backend: CameraBackend, *, logger: LoggerLike = None) -> None:
        self._backend = backend
        self.logger = ensure_structured_logger(logger, component="CameraResource", fallback_name=__name__)
        self._permission = CameraPermissionState.UNKNOWN
        self._devices: List[CameraDevice] = []
        self._active: Optional[CameraHandle] = None
        self._lock = asyncio.Lock()
        self.acquire_count = 0
        self.release_count = 0

    # ------------------------------------------------------------------
    # Introspection

    @property
    def permission_state(self) -> CameraPermissionState:
        return self._permission

    @property
    def active_handle(self) -> Optional[CameraHandle]:
        handle = self._active
        return handle if handle is not None and handle.is_live else None

    async def enumerate_devices(self) -> List[CameraDevice]:
        if self._permission is CameraPermissionState.GRANTED:
            return list(self._devices)
        self.logger.warning("Enumerating cameras before access was granted; labels are withheld")
        devices = await self._backend.list_devices()
        return [dataclasses.replace(device, label="") for device in devices]

    # ------------------------------------------------------------------
    # Acquisition

    async def request_access(
        self,
        preferred_facing: Optional[Facing] = Facing.ENVIRONMENT,
        constraints: Optional[StreamConstraints] = None,
    ) -> CameraHandle:
        """Negotiate permission, pick a device and open it."""

        constraints = constraints or StreamConstraints()
        async with self._lock:
            if self.active_handle is not None:
                raise CameraBusyError(f"Camera already held by {self._active!r}; release it first")

            self._permission = CameraPermissionState.UNKNOWN
            self._set_permission(CameraPermissionState.REQUESTING)
            try:
                await self._backend.check_access()
                devices = list(await self._backend.list_devices())
            except CameraAccessError as exc:
                self._on_access_failure(exc)
                raise

            if not devices:
                exc = CameraAccessError(CameraErrorKind.UNAVAILABLE)
                self._on_access_failure(exc)
                raise exc

            self._devices = devices
            device = pick_device(devices, preferred_facing)
            try:
                handle = await self._open(device, constraints)
            except CameraAccessError as exc:
                self._on_access_failure(exc)
                raise
            self._set_permission(CameraPermissionState.GRANTED)
            return handle

    async def switch_to(self, device_id: str) -> CameraHandle:
        """Release the current handle and open ``device_id`` with the same constraints."""

        async with self._lock:
            device = next((d for d in self._devices if d.device_id == device_id), None)
            if device is None:
                raise CameraAccessError(CameraErrorKind.UNAVAILABLE, f"Unknown camera {device_id!r}")

            previous = self._active
            constraints = previous.constraints if previous is not None else StreamConstraints()
            if previous is not None:
                await self._release_locked(previous)
            self.logger.info(
                "Switching camera %s -> %s",
                previous.device.device_id if previous is not None else None,
                device_id,
            )
            return await self._open(device, constraints)

    async def set_torch(self, handle: Optional[CameraHandle], on: bool) -> bool:
        """Toggle the torch; False when ``handle`` is no longer live."""

        if handle is None or not handle.is_live or handle is not self._active:
            return False
        if not handle.torch_supported:
            raise TorchUnsupportedError(f"{handle.device.label or handle.device.device_id} has no torch")
        await handle._set_torch(on)
        self.logger.info("Torch %s on %s", "on" if on else "off", handle.device.device_id)
        return True

    async def release(self, handle: Optional[CameraHandle]) -> None:
        """Stop ``handle``'s stream. Idempotent; stale handles are ignored."""

        if handle is None:
            return
        async with self._lock:
            await self._release_locked(handle)

    # ------------------------------------------------------------------
    # Internals

    async def _open(self, device: CameraDevice, constraints: StreamConstraints) -> CameraHandle:
        stream = await self._backend.open_stream(device, constraints)
        handle = CameraHandle(device, constraints, stream)
        self._active = handle
        self.acquire_count += 1
        self.logger.info(
            "Acquired %s (%s) at %sx%s",
            device.device_id,
            device.label or "unnamed",
            constraints.resolution[0],
            constraints.resolution[1],
        )
        return handle

    async def _release_locked(self, handle: CameraHandle) -> None:
        try:
            closed = await handle._close()
        finally:
            if self._active is handle:
                self._active = None
        if closed:
            self.release_count += 1
            self.logger.info("Released %s", handle.device.device_id)

    def _set_permission(self, state: CameraPermissionState) -> None:
        if state is self._permission:
            return
        self.logger.debug("Permission %s -> %s", self._permission.value, state.value)
        self._permission = state

    def _on_access_failure(self, exc: CameraAccessError) -> None:
        if exc.kind is CameraErrorKind.DENIED:
            self._set_permission(CameraPermissionState.DENIED)
        elif exc.kind is CameraErrorKind.UNSUPPORTED:
            self._set_permission(CameraPermissionState.UNSUPPORTED)
        else:
            self._set_permission(CameraPermissionState.UNKNOWN)
        self.logger.warning("Camera access failed (%s): %s", exc.kind.value, exc.message)


__all__ = ["CameraHandle", "CameraResource"]
