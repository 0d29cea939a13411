"""Tk operator window: preview, status line, and workflow buttons."""

from __future__ import annotations

import io
from typing import Dict, List, Optional

import cv2
from PIL import Image

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.app.bridge import AsyncBridge
from checkpost_verify.camera.types import CameraDevice
from checkpost_verify.workflow.controller import WorkflowController
from checkpost_verify.workflow.state import (
    Capturing,
    Reviewing,
    Scanning,
    UploadFailed,
    Uploading,
    ViewFlags,
    WorkflowState,
)

try:  # pragma: no cover - GUI availability depends on host
    import tkinter as tk  # type: ignore
    from tkinter import ttk  # type: ignore
except Exception:  # pragma: no cover - headless hosts
    tk = None  # type: ignore
    ttk = None  # type: ignore

PREVIEW_REFRESH_MS = 66
PREVIEW_SIZE = (640, 480)


class OperatorView:
    """Renders the controller's state; every button maps to one controller operation."""

    def __init__(
        self,
        root,
        controller: WorkflowController,
        bridge: AsyncBridge,
        *,
        logger: LoggerLike = None,
    ) -> None:
        if tk is None or ttk is None:
            raise RuntimeError("Tk is not available on this host")
        self.root = root
        self.controller = controller
        self.bridge = bridge
        self._logger = ensure_structured_logger(logger, component="OperatorView", fallback_name=__name__)
        self._photo_ref: Optional[tk.PhotoImage] = None
        self._image_id: Optional[int] = None
        self._review_photo: Optional[tk.PhotoImage] = None
        self._devices: List[CameraDevice] = []
        self._closed = False

        root.title("Checkpoint Verification")
        root.columnconfigure(0, weight=1)
        root.rowconfigure(0, weight=1)

        frame = ttk.Frame(root, padding="8")
        frame.grid(row=0, column=0, sticky="nsew")
        frame.columnconfigure(0, weight=1)
        frame.rowconfigure(0, weight=1)

        self._canvas = tk.Canvas(
            frame,
            background="#0f1115",
            width=PREVIEW_SIZE[0],
            height=PREVIEW_SIZE[1],
            highlightthickness=0,
        )
        self._canvas.grid(row=0, column=0, sticky="nsew")

        self._status = tk.StringVar(value="")
        ttk.Label(frame, textvariable=self._status, anchor="w").grid(row=1, column=0, sticky="ew", pady=(6, 2))

        controls = ttk.Frame(frame)
        controls.grid(row=2, column=0, sticky="ew")

        self._buttons: Dict[str, ttk.Button] = {}
        specs = [
            ("capture", "Capture", self.controller.capture),
            ("retake", "Retake", self.controller.retake),
            ("confirm", "Confirm", self.controller.confirm),
            ("retry", "Retry upload", self.controller.retry),
            ("cancel", "Cancel", self.controller.cancel),
            ("restart", "Next vehicle", self.controller.restart),
        ]
        for column, (key, label, operation) in enumerate(specs):
            button = ttk.Button(controls, text=label, command=lambda op=operation: self._run(op))
            button.grid(row=0, column=column, padx=2)
            self._buttons[key] = button

        extras = ttk.Frame(frame)
        extras.grid(row=3, column=0, sticky="ew", pady=(4, 0))
        self._torch = tk.BooleanVar(value=False)
        self._torch_check = ttk.Checkbutton(extras, text="Torch", variable=self._torch, command=self._on_torch)
        self._torch_check.grid(row=0, column=0, padx=2)
        self._camera_choice = tk.StringVar(value="")
        self._camera_combo = ttk.Combobox(extras, textvariable=self._camera_choice, state="readonly", width=32)
        self._camera_combo.grid(row=0, column=1, padx=2)
        self._camera_combo.bind("<<ComboboxSelected>>", self._on_camera_selected)

        self.controller.subscribe(self._on_state_threadsafe)
        self.root.after(PREVIEW_REFRESH_MS, self._refresh_preview)

    # ------------------------------------------------------------------
    # Controller -> view

    def _on_state_threadsafe(self, state: WorkflowState) -> None:
        self.bridge.call_in_gui(self._render_state, state)

    def _render_state(self, state: WorkflowState) -> None:
        if self._closed:
            return
        flags = self.controller.view_flags()
        self._apply_flags(flags, state)
        if isinstance(state, (Scanning, Capturing)) and flags.camera_owned:
            self._reload_cameras()
        if isinstance(state, (Reviewing, Uploading, UploadFailed)):
            self._show_still(state.image.data)

    def _apply_flags(self, flags: ViewFlags, state: WorkflowState) -> None:
        self._status.set(flags.message)
        enabled = {
            "capture": flags.can_capture,
            "retake": flags.can_retake or flags.can_cancel_upload,
            "confirm": flags.can_confirm,
            "retry": flags.can_retry,
            "cancel": flags.can_cancel,
            "restart": flags.can_restart,
        }
        for key, on in enabled.items():
            self._buttons[key].state(["!disabled"] if on else ["disabled"])
        self._buttons["restart"].configure(text="Retry camera" if flags.show_error_panel else "Next vehicle")
        self._buttons["retake"].configure(text="Cancel upload" if flags.is_uploading else "Retake")
        owned = ["!disabled"] if flags.camera_owned else ["disabled"]
        self._torch_check.state(owned)
        self._camera_combo.state(owned + ["readonly"])
        if not flags.camera_owned:
            self._torch.set(False)
        if flags.upload_success:
            self._canvas.configure(background="#12361f")
        elif flags.show_error_panel or flags.upload_error:
            self._canvas.configure(background="#3a1414")
        else:
            self._canvas.configure(background="#0f1115")

    def _refresh_preview(self) -> None:
        if self._closed:
            return
        frame = self.controller.preview_frame()
        if frame is not None:
            try:
                rgb = cv2.cvtColor(frame.data, cv2.COLOR_BGR2RGB)
                self._draw(Image.fromarray(rgb), scan_box=isinstance(self.controller.state, Scanning))
            except Exception:
                self._logger.debug("Unable to render preview frame", exc_info=True)
        self.root.after(PREVIEW_REFRESH_MS, self._refresh_preview)

    def _show_still(self, data: bytes) -> None:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except Exception:
            self._logger.debug("Unable to render captured still", exc_info=True)
            return
        self._draw(image.convert("RGB"), scan_box=False)

    def _draw(self, image: Image.Image, *, scan_box: bool) -> None:
        canvas_w = max(self._canvas.winfo_width(), 1)
        canvas_h = max(self._canvas.winfo_height(), 1)
        if canvas_w <= 1 or canvas_h <= 1:
            canvas_w, canvas_h = PREVIEW_SIZE
        scale = min(canvas_w / image.width, canvas_h / image.height)
        target = (max(1, int(image.width * scale)), max(1, int(image.height * scale)))
        image = image.resize(target, Image.Resampling.BILINEAR)

        # Native PhotoImage via PPM; avoids ImageTk lifetime issues.
        ppm_data = io.BytesIO()
        image.save(ppm_data, format="PPM")
        self._photo_ref = tk.PhotoImage(data=ppm_data.getvalue())

        cx, cy = canvas_w // 2, canvas_h // 2
        if self._image_id is None:
            self._image_id = self._canvas.create_image(cx, cy, image=self._photo_ref, anchor="center")
        else:
            self._canvas.itemconfig(self._image_id, image=self._photo_ref)
            self._canvas.coords(self._image_id, cx, cy)

        self._canvas.delete("scan_box")
        if scan_box:
            window = self.controller.settings.scan_window
            half_w = int(window.width * scale) // 2
            half_h = int(window.height * scale) // 2
            self._canvas.create_rectangle(
                cx - half_w, cy - half_h, cx + half_w, cy + half_h,
                outline="#3fb950", width=2, tags="scan_box",
            )

    # ------------------------------------------------------------------
    # View -> controller

    def _run(self, operation) -> None:
        self.bridge.run_coroutine(operation())

    def _on_torch(self) -> None:
        requested = bool(self._torch.get())
        future = self.bridge.run_coroutine(self.controller.set_torch(requested))

        def _done(fut) -> None:
            if fut.cancelled() or fut.exception() is not None or fut.result():
                return
            self.bridge.call_in_gui(self._torch.set, False)

        future.add_done_callback(_done)

    def _reload_cameras(self) -> None:
        future = self.bridge.run_coroutine(self.controller.list_cameras())

        def _done(fut) -> None:
            if fut.cancelled() or fut.exception() is not None:
                return
            self.bridge.call_in_gui(self._set_devices, fut.result())

        future.add_done_callback(_done)

    def _set_devices(self, devices: List[CameraDevice]) -> None:
        self._devices = list(devices)
        labels = [device.label or device.device_id for device in self._devices]
        self._camera_combo.configure(values=labels)
        active = self.controller.camera.active_handle
        if active is not None:
            for device, label in zip(self._devices, labels):
                if device.device_id == active.device.device_id:
                    self._camera_choice.set(label)
                    break

    def _on_camera_selected(self, _event=None) -> None:
        index = self._camera_combo.current()
        if 0 <= index < len(self._devices):
            self._run(lambda: self.controller.switch_camera(self._devices[index].device_id))

    def close(self) -> None:
        self._closed = True
        self.controller.unsubscribe(self._on_state_threadsafe)


__all__ = ["OperatorView"]
