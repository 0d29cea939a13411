"""QR decoding over a live camera handle."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

import cv2
import numpy as np

try:
    from pyzbar.pyzbar import ZBarSymbol, decode
except ImportError:  # pragma: no cover - raised when libzbar is not installed
    ZBarSymbol = None
    decode = None

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.camera.resource import CameraHandle
from checkpost_verify.camera.types import CameraAccessError, CameraErrorKind, DeviceLost, Frame

DecodeFn = Callable[[Any], Sequence[str]]

DEFAULT_RATE_HZ = 10.0
DECODER_MISSING_MESSAGE = "QR decoding is unavailable: pyzbar could not load the zbar library."


@dataclass(frozen=True)
class ScanWindow:
    """Centred region of interest, in pixels, where decoding is attempted."""

    width: int = 250
    height: int = 250

    def crop(self, image: np.ndarray) -> np.ndarray:
        if image is None or getattr(image, "ndim", 0) < 2:
            return image
        frame_h, frame_w = image.shape[:2]
        width = min(max(1, int(self.width)), frame_w)
        height = min(max(1, int(self.height)), frame_h)
        left = (frame_w - width) // 2
        top = (frame_h - height) // 2
        return image[top:top + height, left:left + width]


def decode_qr_payloads(image: np.ndarray) -> List[str]:
    """Decode every QR symbol in ``image`` (BGR or grayscale) to text."""

    if image is None or image.size == 0:
        return []
    if decode is None:
        raise CameraAccessError(CameraErrorKind.UNSUPPORTED, DECODER_MISSING_MESSAGE)
    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
    payloads = []
    for symbol in decode(gray, symbols=[ZBarSymbol.QRCODE]):
        payloads.append(symbol.data.decode("utf-8", errors="replace"))
    return payloads


class DecodeStream:
    """Lazy, infinite, non-restartable sequence of decode attempts.

    Each element is one decoded payload, or None for a frame with no symbol.
    Several symbols in one frame come out as consecutive elements.
    """

    def __init__(
        self,
        handle: CameraHandle,
        scan_window: Optional[ScanWindow],
        *,
        interval: float,
        decode_fn: DecodeFn,
        logger: LoggerLike = None,
    ) -> None:
        self.handle = handle
        self.scan_window = scan_window
        self.interval = max(0.0, interval)
        self._decode_fn = decode_fn
        self._logger = ensure_structured_logger(logger, component="DecodeStream", fallback_name=__name__)
        self._frame_log = self._logger.frames()
        self._attempt_lock = asyncio.Lock()
        self._pending: deque[str] = deque()
        self._stopped = False
        self._last_attempt: Optional[float] = None
        self.last_frame: Optional[Frame] = None
        self.attempts = 0

    @property
    def stopped(self) -> bool:
        return self._stopped

    def __aiter__(self) -> "DecodeStream":
        return self

    async def __anext__(self) -> Optional[str]:
        if self._pending and not self._stopped:
            return self._pending.popleft()
        if self._stopped:
            raise StopAsyncIteration

        async with self._attempt_lock:
            await self._throttle()
            if self._stopped:
                raise StopAsyncIteration
            try:
                frame = await self.handle.read_frame()
            except DeviceLost as exc:
                self._stopped = True
                raise CameraAccessError(CameraErrorKind.UNAVAILABLE, f"Camera stream lost: {exc}") from exc
            self.last_frame = frame
            payloads = await self._decode(frame)
            if self._stopped:
                raise StopAsyncIteration
            self.attempts += 1

        if not payloads:
            return None
        self._pending.extend(payloads[1:])
        return payloads[0]

    async def stop(self) -> None:
        """Stop after any in-flight attempt; its payloads are dropped."""
        self._stopped = True
        async with self._attempt_lock:
            self._pending.clear()

    async def _throttle(self) -> None:
        loop = asyncio.get_running_loop()
        if self._last_attempt is not None and self.interval > 0:
            delay = self._last_attempt + self.interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
        self._last_attempt = loop.time()

    async def _decode(self, frame: Frame) -> List[str]:
        image = self.scan_window.crop(frame.data) if self.scan_window else frame.data
        try:
            return list(await asyncio.to_thread(self._decode_fn, image))
        except CameraAccessError:
            self._stopped = True
            raise
        except Exception as exc:
            # Blur, partial symbols and decoder hiccups are frame noise.
            self._frame_log.debug("Decode attempt failed on frame %s: %s", frame.frame_number, exc)
            return []


class CodeDecoder:
    """Creates decode streams; a stopped stream is never reused."""

    def __init__(
        self,
        *,
        rate_hz: float = DEFAULT_RATE_HZ,
        decode_fn: Optional[DecodeFn] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.rate_hz = rate_hz
        self._injected = decode_fn is not None
        self._decode_fn = decode_fn or decode_qr_payloads
        self.logger = ensure_structured_logger(logger, component="CodeDecoder", fallback_name=__name__)

    @property
    def available(self) -> bool:
        return self._injected or decode is not None

    def start(self, handle: CameraHandle, scan_window: Optional[ScanWindow] = None) -> DecodeStream:
        if not self.available:
            self.logger.error("pyzbar could not load libzbar; scanning cannot start")
            raise CameraAccessError(CameraErrorKind.UNSUPPORTED, DECODER_MISSING_MESSAGE)
        interval = 1.0 / self.rate_hz if self.rate_hz and self.rate_hz > 0 else 0.0
        self.logger.debug(
            "Decoding on %s at %s Hz window=%s",
            handle.device.device_id,
            self.rate_hz,
            scan_window,
        )
        return DecodeStream(handle, scan_window, interval=interval, decode_fn=self._decode_fn, logger=self.logger)

    async def stop(self, stream: Optional[DecodeStream]) -> None:
        if stream is None:
            return
        await stream.stop()


__all__ = [
    "CodeDecoder",
    "DECODER_MISSING_MESSAGE",
    "DEFAULT_RATE_HZ",
    "DecodeStream",
    "ScanWindow",
    "decode_qr_payloads",
]
