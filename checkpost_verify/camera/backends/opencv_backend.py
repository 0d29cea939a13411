"""OpenCV camera backend: device discovery, access checks, and frame streams."""

from __future__ import annotations

import asyncio
import glob
import os
import sys
import time
from pathlib import Path
from typing import Any, List, Optional, Set

try:
    import cv2
except ImportError:  # pragma: no cover - reported as UNSUPPORTED at runtime
    cv2 = None

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.camera.types import (
    CameraAccessError,
    CameraDevice,
    CameraErrorKind,
    DeviceLost,
    Facing,
    Frame,
    StreamConstraints,
    TorchUnsupportedError,
)

PROBE_TIMEOUT = 1.25  # seconds per device


class OpenCVStream:
    """Async frame reader over ``cv2.VideoCapture``; blocking calls run in a thread."""

    def __init__(self, device: CameraDevice, constraints: StreamConstraints, *, logger: LoggerLike = None) -> None:
        self.device = device
        self.constraints = constraints
        self._logger = ensure_structured_logger(logger, component="OpenCVStream", fallback_name=__name__)
        self._cap: Optional[Any] = None
        self._frame_number = 0
        self._stopped = False

    @property
    def torch_supported(self) -> bool:
        return False

    def open(self) -> bool:
        """Open and configure the capture (blocking)."""
        self._cap = _open_capture(_capture_source(self.device.device_id), self._logger)
        if self._cap is None:
            return False
        # Prefer MJPEG to avoid YUYV color issues on some UVC cams.
        try:
            fourcc = cv2.VideoWriter_fourcc("M", "J", "P", "G")
            self._cap.set(cv2.CAP_PROP_FOURCC, fourcc)
        except cv2.error:
            pass
        width, height = self.constraints.resolution
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        if self.constraints.fps > 0:
            self._cap.set(cv2.CAP_PROP_FPS, float(self.constraints.fps))
        self._logger.info(
            "Opened %s (%s) | requested=%sx%s@%s resolved=%sx%s",
            self.device.device_id,
            self.device.label or "unnamed",
            width,
            height,
            self.constraints.fps,
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )
        return True

    async def read_frame(self) -> Frame:
        cap = self._cap
        if self._stopped or cap is None:
            raise DeviceLost(f"Camera {self.device.device_id} is not streaming")
        success, data = await asyncio.to_thread(cap.read)
        if not success or data is None:
            raise DeviceLost(f"Camera {self.device.device_id} lost or failed to read")
        self._frame_number += 1
        return Frame(data=data, timestamp=time.time(), frame_number=self._frame_number)

    async def set_torch(self, on: bool) -> None:
        raise TorchUnsupportedError(f"Camera {self.device.device_id} has no controllable light")

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        cap, self._cap = self._cap, None
        if cap is not None:
            await asyncio.to_thread(cap.release)
            self._logger.debug("Released %s", self.device.device_id)


class OpenCVCameraBackend:
    """Camera platform API on OpenCV (V4L2 nodes on Linux, probed indices elsewhere)."""

    def __init__(self, *, max_probe: int = 4, logger: LoggerLike = None) -> None:
        self.max_probe = max(1, int(max_probe))
        self._logger = ensure_structured_logger(logger, component="OpenCVBackend", fallback_name=__name__)
        self._cleanup: Set[asyncio.Task] = set()

    async def check_access(self) -> None:
        if cv2 is None:
            raise CameraAccessError(CameraErrorKind.UNSUPPORTED, "OpenCV is not installed; camera access unsupported.")
        if not sys.platform.startswith("linux"):
            # Other platforms only report refusal by failing to open.
            return
        nodes = _video_nodes()
        if not nodes:
            raise CameraAccessError(CameraErrorKind.UNAVAILABLE)
        if not any(os.access(node, os.R_OK | os.W_OK) for node in nodes):
            raise CameraAccessError(
                CameraErrorKind.DENIED,
                "Camera access denied: no permission to open "
                + ", ".join(nodes)
                + " (is the user in the 'video' group?)",
            )

    async def list_devices(self) -> List[CameraDevice]:
        if cv2 is None:
            return []
        if sys.platform.startswith("linux"):
            devices = _discover_v4l2_devices()
        else:
            devices = await self._probe_indices()
        self._logger.debug("Discovered %d camera(s): %s", len(devices), [d.device_id for d in devices])
        return devices

    async def open_stream(self, device: CameraDevice, constraints: StreamConstraints) -> OpenCVStream:
        if cv2 is None:
            raise CameraAccessError(CameraErrorKind.UNSUPPORTED)
        stream = OpenCVStream(device, constraints, logger=self._logger)
        opening = asyncio.ensure_future(asyncio.to_thread(stream.open))
        try:
            opened = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; close whatever it opens.
            opening.add_done_callback(lambda _f, s=stream: self._release_abandoned(s, _f))
            raise
        except Exception:
            await stream.stop()
            raise
        if not opened:
            raise CameraAccessError(
                CameraErrorKind.UNAVAILABLE,
                f"Camera {device.label or device.device_id} could not be opened.",
            )
        return stream

    def _release_abandoned(self, stream: OpenCVStream, opening: "asyncio.Future[bool]") -> None:
        if not opening.cancelled() and opening.exception() is not None:
            self._logger.debug("Abandoned open of %s failed: %s", stream.device.device_id, opening.exception())
        self._logger.info("Closing %s opened after its request was cancelled", stream.device.device_id)
        task = asyncio.get_running_loop().create_task(stream.stop())
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    async def _probe_indices(self) -> List[CameraDevice]:
        async def probe(index: int) -> Optional[CameraDevice]:
            try:
                ok = await asyncio.wait_for(asyncio.to_thread(_probe_index, index), timeout=PROBE_TIMEOUT)
            except asyncio.TimeoutError:
                self._logger.debug("Probe timeout for camera index %s", index)
                return None
            if not ok:
                return None
            return CameraDevice(device_id=str(index), label=f"Camera {index}", facing=Facing.UNKNOWN)

        results = await asyncio.gather(*(probe(index) for index in range(self.max_probe)))
        return [device for device in results if device is not None]


# ----------------------------------------------------------------------
# Blocking helpers


def _capture_source(device_id: str):
    return int(device_id) if device_id.isdigit() else device_id


def _open_capture(source, log) -> Optional[Any]:
    """Prefer the V4L2 backend, then fall back to OpenCV's default."""

    backends = []
    v4l2 = getattr(cv2, "CAP_V4L2", None)
    if v4l2 is not None and sys.platform.startswith("linux"):
        backends.append(v4l2)
    backends.append(None)

    for backend in backends:
        try:
            cap = cv2.VideoCapture(source, backend) if backend is not None else cv2.VideoCapture(source)
        except cv2.error as exc:
            log.debug("VideoCapture open failed for %s backend=%s: %s", source, backend, exc)
            continue
        if cap is not None and cap.isOpened():
            return cap
        if cap is not None:
            cap.release()

    log.warning("Unable to open camera %s", source)
    return None


def _probe_index(index: int) -> bool:
    cap = cv2.VideoCapture(index)
    try:
        if not cap.isOpened():
            return False
        ok, frame = cap.read()
        return bool(ok and frame is not None)
    finally:
        cap.release()


def _video_nodes() -> List[str]:
    nodes = []
    for path in sorted(glob.glob("/dev/video*")):
        suffix = Path(path).name.replace("video", "")
        if suffix.isdigit():
            nodes.append(path)
    return sorted(nodes, key=lambda p: int(Path(p).name.replace("video", "")))


def _discover_v4l2_devices() -> List[CameraDevice]:
    """List /dev/video* capture nodes with sysfs names, USB devices first."""

    devices: list[CameraDevice] = []
    seen_names: set[str] = set()
    nodes = sorted(_video_nodes(), key=lambda p: not _is_usb(p))
    for node in nodes:
        if not _is_capture_node(node):
            continue
        name = _read_sysfs_name(node) or Path(node).name
        # UVC cameras expose a metadata node with the same name; keep the first.
        key = f"{name}|{_sysfs_device_path(node)}"
        if key in seen_names:
            continue
        seen_names.add(key)
        devices.append(CameraDevice(device_id=node, label=name, facing=Facing.UNKNOWN))
    return devices


def _sysfs_dir(node: str) -> Path:
    return Path("/sys/class/video4linux") / Path(node).name


def _sysfs_device_path(node: str) -> str:
    try:
        return str((_sysfs_dir(node) / "device").resolve())
    except OSError:
        return ""


def _is_usb(node: str) -> bool:
    return "usb" in _sysfs_device_path(node)


def _is_capture_node(node: str) -> bool:
    index_file = _sysfs_dir(node) / "index"
    try:
        return index_file.read_text(encoding="utf-8").strip() in ("", "0")
    except OSError:
        return True


def _read_sysfs_name(node: str) -> Optional[str]:
    try:
        text = (_sysfs_dir(node) / "name").read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text or None


__all__ = ["OpenCVCameraBackend", "OpenCVStream"]
