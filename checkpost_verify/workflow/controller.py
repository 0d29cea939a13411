"""Scan -> capture -> verify state machine.

All state changes go through ``_transition(expected, new)``. Background work
(scan loop, confirm delay, capture preview, upload) holds the state instance it
was started for and only acts while that instance is still current, so a
cancelled or superseded step can never move the workflow.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Union

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.core.tasks import TaskManager
from checkpost_verify.camera.resource import CameraResource
from checkpost_verify.camera.types import (
    CameraAccessError,
    CameraDevice,
    CameraErrorKind,
    Frame,
    TorchUnsupportedError,
)
from checkpost_verify.capture.session import CaptureSession
from checkpost_verify.scan.decoder import CodeDecoder
from checkpost_verify.scan.session import ScanSession
from checkpost_verify.upload.uploader import UploadFailureReason, UploadResult, VerificationApi
from checkpost_verify.workflow.settings import WorkflowSettings
from checkpost_verify.workflow.state import (
    CameraError,
    Capturing,
    Idle,
    Reviewing,
    ScanConfirmed,
    Scanning,
    UploadFailed,
    Uploading,
    Verified,
    ViewFlags,
    WorkflowState,
)

StateCallback = Callable[[WorkflowState], None]

PREVIEW_INTERVAL = 1.0 / 15

SCAN_TASK = "scan"
CONFIRM_TASK = "confirm"
CAPTURE_OPEN_TASK = "capture_open"
PREVIEW_TASK = "preview"
UPLOAD_TASK = "upload"
RECOVER_TASK = "recover"


class WorkflowController:
    """Drives one checkpoint verification cycle after another.

    Operator operations are coroutines serialised by one lock and return
    whether they were accepted; requests that do not apply to the current
    state are ignored.
    """

    def __init__(
        self,
        camera: CameraResource,
        uploader: VerificationApi,
        *,
        settings: Optional[WorkflowSettings] = None,
        decoder: Optional[CodeDecoder] = None,
        success_cue: Optional[Callable[[], None]] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.logger = ensure_structured_logger(logger, component="Workflow", fallback_name=__name__)
        self.settings = settings or WorkflowSettings()
        self._camera = camera
        self._uploader = uploader
        self._decoder = decoder or CodeDecoder(rate_hz=self.settings.decode_rate_hz, logger=self.logger)
        self._success_cue = success_cue

        self._state: WorkflowState = Idle()
        self._subscribers: List[StateCallback] = []
        self._ops = asyncio.Lock()
        self._tasks = TaskManager(logger=self.logger, on_task_error=self._on_task_error)
        self._scan: Optional[ScanSession] = None
        self._capture: Optional[CaptureSession] = None
        self._failing: Optional[WorkflowState] = None

    async def __aenter__(self) -> "WorkflowController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # State access

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def camera(self) -> CameraResource:
        return self._camera

    @property
    def uploader(self) -> VerificationApi:
        return self._uploader

    @property
    def tasks(self) -> TaskManager:
        return self._tasks

    def view_flags(self) -> ViewFlags:
        return ViewFlags.from_state(self._state, camera_ready=self._owned_session() is not None)

    def preview_frame(self) -> Optional[Frame]:
        session = self._owned_session()
        if isinstance(session, ScanSession):
            return session.latest_frame()
        if isinstance(session, CaptureSession):
            return session.last_frame
        return None

    def subscribe(self, callback: StateCallback) -> None:
        """Subscribe to state changes; called at once with the current state."""
        self._subscribers.append(callback)
        callback(self._state)

    def unsubscribe(self, callback: StateCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _notify(self, state: WorkflowState) -> None:
        for sub in list(self._subscribers):
            try:
                sub(state)
            except Exception as e:
                self.logger.error("Subscriber error: %s", e)

    def _transition(self, expected: WorkflowState, new: WorkflowState) -> bool:
        if self._state is not expected:
            self.logger.debug(
                "Dropping stale transition %s -> %s (now %s)", expected.name, new.name, self._state.name
            )
            return False
        self._state = new
        self.logger.info("%s -> %s", expected.name, new.name)
        self._notify(new)
        return True

    # ------------------------------------------------------------------
    # Operator operations

    async def start(self) -> bool:
        """Acquire the camera and begin scanning. Only valid from Idle."""
        async with self._ops:
            return await self._start_locked()

    async def capture(self) -> bool:
        async with self._ops:
            state = self._state
            session = self._capture
            if not isinstance(state, Capturing):
                return False
            if session is None or not session.is_ready:
                self.logger.debug("Capture ignored; preview camera not ready")
                return False
            try:
                image = await session.capture()
            except CameraAccessError as exc:
                await self._fail_camera(state, exc)
                return False
            except ValueError as exc:
                self.logger.warning("Capture failed, still in preview: %s", exc)
                return False
            if self._state is not state:
                return False
            await self._close_capture()
            return self._transition(state, Reviewing(state.identifier, image))

    async def retake(self) -> bool:
        """Discard the photo (or drop the upload in flight) and return to the preview."""
        async with self._ops:
            state = self._state
            if not isinstance(state, (Reviewing, Uploading, UploadFailed)):
                return False
            capturing = Capturing(state.identifier)
            if not self._transition(state, capturing):
                return False
            if isinstance(state, Uploading):
                self.logger.info("Upload for %s abandoned by retake", state.identifier)
                await self._tasks.cancel(UPLOAD_TASK)
            if self._state is capturing:
                self._tasks.create(CAPTURE_OPEN_TASK, self._open_capture(capturing))
            return True

    async def confirm(self) -> bool:
        async with self._ops:
            state = self._state
            if not isinstance(state, Reviewing):
                return False
            return self._begin_upload(state)

    async def retry(self) -> bool:
        """Upload the same image for the same identifier again."""
        async with self._ops:
            state = self._state
            if not isinstance(state, UploadFailed):
                return False
            return self._begin_upload(state)

    async def cancel(self) -> bool:
        """Abandon the capture step and go back to scanning a new code."""
        async with self._ops:
            state = self._state
            if not isinstance(state, Capturing):
                return False
            await self._tasks.cancel(CAPTURE_OPEN_TASK)
            await self._close_capture()
            if not self._transition(state, Idle()):
                return False
            await self._start_locked()
            return True

    async def restart(self) -> bool:
        """Next vehicle after Verified, or retry after a camera error."""
        async with self._ops:
            state = self._state
            if not isinstance(state, (Verified, CameraError)):
                return False
            if not self._transition(state, Idle()):
                return False
            await self._start_locked()
            return True

    async def set_torch(self, on: bool) -> bool:
        async with self._ops:
            session = self._owned_session()
            if session is None:
                return False
            try:
                return await session.set_torch(on)
            except TorchUnsupportedError as exc:
                self.logger.warning("Torch unavailable: %s", exc)
                return False

    async def switch_camera(self, device_id: str) -> bool:
        async with self._ops:
            state = self._state
            session = self._owned_session()
            if session is None:
                return False
            known = await self._camera.enumerate_devices()
            if all(device.device_id != device_id for device in known):
                self.logger.warning("Ignoring switch to unknown camera %r", device_id)
                return False
            try:
                if isinstance(session, ScanSession):
                    await session.switch_camera(device_id)
                else:
                    await session.switch_to(device_id)
            except CameraAccessError as exc:
                await self._fail_camera(state, exc)
                return False
            self._notify(self._state)
            return True

    async def list_cameras(self) -> List[CameraDevice]:
        return await self._camera.enumerate_devices()

    async def close(self) -> None:
        """Cancel background work, release the camera and return to Idle."""
        async with self._ops:
            await self._tasks.cancel_all(reason="close")
            await self._close_capture()
            await self._close_scan()
            if not isinstance(self._state, Idle):
                self._transition(self._state, Idle())

    # ------------------------------------------------------------------
    # Scanning

    async def _start_locked(self) -> bool:
        idle = self._state
        if not isinstance(idle, Idle):
            return False
        session = ScanSession(
            self._camera,
            self._decoder,
            facing=self.settings.preferred_facing,
            constraints=self.settings.scan_constraints,
            scan_window=self.settings.scan_window,
            logger=self.logger,
        )
        try:
            await session.open()
        except CameraAccessError as exc:
            await session.close()
            self._transition(idle, CameraError(exc.kind, exc.message))
            return False
        except asyncio.CancelledError:
            await session.close()
            raise

        scanning = Scanning()
        self._scan = session
        if not self._transition(idle, scanning):
            await self._close_scan()
            return False
        self._tasks.create(SCAN_TASK, self._scan_loop(scanning, session))
        return True

    async def _scan_loop(self, scanning: Scanning, session: ScanSession) -> None:
        try:
            identifier = await session.next_identifier()
        except CameraAccessError as exc:
            await self._fail_camera(scanning, exc)
            return

        if self._state is not scanning:
            return
        await self._close_scan()
        confirmed = ScanConfirmed(identifier, scan_count=session.payload_count)
        if self._transition(scanning, confirmed):
            self._tasks.create(CONFIRM_TASK, self._confirm_delay(confirmed))

    async def _confirm_delay(self, confirmed: ScanConfirmed) -> None:
        self._play_success_cue()
        await asyncio.sleep(self.settings.confirm_delay)
        capturing = Capturing(confirmed.identifier)
        if self._transition(confirmed, capturing):
            self._tasks.create(CAPTURE_OPEN_TASK, self._open_capture(capturing))

    def _play_success_cue(self) -> None:
        if self._success_cue is None:
            return
        try:
            self._success_cue()
        except Exception as e:
            self.logger.warning("Success cue failed: %s", e)

    # ------------------------------------------------------------------
    # Capturing

    async def _open_capture(self, capturing: Capturing) -> None:
        session = CaptureSession(
            self._camera,
            capturing.identifier,
            facing=self.settings.preferred_facing,
            constraints=self.settings.capture_constraints,
            flash_delay=self.settings.capture_flash_delay,
            jpeg_quality=self.settings.jpeg_quality,
            logger=self.logger,
        )
        try:
            await session.open()
        except CameraAccessError as exc:
            await session.close()
            await self._fail_camera(capturing, exc)
            return
        except asyncio.CancelledError:
            await session.close()
            raise

        if self._state is not capturing:
            await session.close()
            return
        self._capture = session
        self._tasks.create(PREVIEW_TASK, self._preview_loop(capturing, session))
        self._notify(capturing)

    async def _preview_loop(self, capturing: Capturing, session: CaptureSession) -> None:
        try:
            await session.run_preview(PREVIEW_INTERVAL)
        except CameraAccessError as exc:
            await self._fail_camera(capturing, exc)

    # ------------------------------------------------------------------
    # Uploading

    def _begin_upload(self, state: Union[Reviewing, UploadFailed]) -> bool:
        uploading = Uploading(state.identifier, state.image)
        if not self._transition(state, uploading):
            return False
        self._tasks.create(UPLOAD_TASK, self._upload(uploading))
        return True

    async def _upload(self, uploading: Uploading) -> None:
        try:
            result = await self._uploader.verify(uploading.identifier, uploading.image)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.exception("Uploader raised for %s", uploading.identifier)
            result = UploadResult.failure(UploadFailureReason.NETWORK, str(exc) or type(exc).__name__)

        if self._state is not uploading:
            self.logger.info("Discarding upload result for %s; workflow moved on", uploading.identifier)
            return
        if result.ok:
            self._transition(uploading, Verified(uploading.identifier, result))
        else:
            self._transition(uploading, UploadFailed(uploading.identifier, uploading.image, result))

    # ------------------------------------------------------------------
    # Camera ownership and failure

    def _owned_session(self) -> Optional[Union[ScanSession, CaptureSession]]:
        state = self._state
        if isinstance(state, Scanning) and self._scan is not None and self._scan.is_open:
            return self._scan
        if isinstance(state, Capturing) and self._capture is not None and self._capture.is_ready:
            return self._capture
        return None

    async def _close_scan(self) -> None:
        session, self._scan = self._scan, None
        if session is not None:
            await session.close()

    async def _close_capture(self) -> None:
        await self._tasks.cancel(PREVIEW_TASK)
        session, self._capture = self._capture, None
        if session is not None:
            await session.close()

    async def _fail_camera(self, state: WorkflowState, exc: CameraAccessError) -> None:
        # First reporter wins; a switch failure is also seen by the scan loop.
        if self._state is not state or self._failing is state:
            return
        self._failing = state
        self.logger.error("Camera failure in %s: %s", state.name, exc.message)
        if isinstance(state, Scanning):
            await self._tasks.cancel(SCAN_TASK)
            await self._close_scan()
        else:
            await self._tasks.cancel(CAPTURE_OPEN_TASK)
            await self._close_capture()
        self._transition(state, CameraError(exc.kind, exc.message))

    def _on_task_error(self, name: str, exc: BaseException) -> None:
        state = self._state
        if name in (SCAN_TASK, CAPTURE_OPEN_TASK, PREVIEW_TASK) and isinstance(state, (Scanning, Capturing)):
            error = CameraAccessError(CameraErrorKind.UNAVAILABLE, f"Camera failure: {exc}")
            if not self._tasks.is_running(RECOVER_TASK):
                self._tasks.create(RECOVER_TASK, self._fail_camera(state, error))


__all__ = ["WorkflowController", "StateCallback"]
