"""Command-line launcher for the operator window."""

from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from typing import Optional

from checkpost_verify.core.logging_config import configure_logging
from checkpost_verify.core.logging_utils import get_module_logger
from checkpost_verify.core.paths import ensure_directories
from checkpost_verify.app.config import AppSettings, load_settings
from checkpost_verify.camera.backends.opencv_backend import OpenCVCameraBackend
from checkpost_verify.camera.resource import CameraResource
from checkpost_verify.camera.types import Facing
from checkpost_verify.scan.decoder import CodeDecoder
from checkpost_verify.upload.uploader import VerificationUploader
from checkpost_verify.workflow.controller import WorkflowController

logger = get_module_logger(__name__)

SHUTDOWN_TIMEOUT = 5.0


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="checkpost-verify",
        description="Checkpoint vehicle verification: scan QR, photograph, upload",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.txt (default: ./config.txt, else ~/.checkpost_verify/config.txt)",
    )
    parser.add_argument("--api-url", dest="api_base_url", help="Verification API base URL")
    parser.add_argument(
        "--token",
        dest="auth_token",
        help="Bearer token for the verification API (default: $CHECKPOST_TOKEN)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Logging level (default: from config, else info)",
    )
    parser.add_argument("--log-file", help="Rotating log file path, or 'none' to disable")
    parser.add_argument(
        "--log-frames",
        action="store_const",
        const="true",
        help="Log every decode attempt at debug level",
    )
    parser.add_argument(
        "--facing",
        dest="preferred_facing",
        choices=[facing.value for facing in Facing],
        help="Preferred camera facing (default: environment)",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> AppSettings:
    overrides = {
        "api_base_url": args.api_base_url,
        "auth_token": args.auth_token,
        "log_level": args.log_level,
        "log_file": args.log_file,
        "log_frames": args.log_frames,
        "preferred_facing": args.preferred_facing,
    }
    return load_settings(args.config, overrides)


def build_controller(settings: AppSettings, *, success_cue=None) -> WorkflowController:
    token = {"value": settings.api.auth_token}

    def on_unauthorized(status: int) -> None:
        # Token is dropped until the operator signs in again.
        logger.warning("Verification API refused credentials (HTTP %d); token cleared", status)
        token["value"] = None

    camera = CameraResource(OpenCVCameraBackend(max_probe=settings.max_probe))
    uploader = VerificationUploader(
        settings.api.base_url,
        settings.api.verify_path,
        token_provider=lambda: token["value"],
        on_unauthorized=on_unauthorized,
        timeout=settings.api.upload_timeout,
    )
    return WorkflowController(
        camera,
        uploader,
        settings=settings.workflow,
        decoder=CodeDecoder(rate_hz=settings.workflow.decode_rate_hz),
        success_cue=success_cue,
    )


async def _shutdown(controller: WorkflowController) -> None:
    await controller.close()
    await controller.uploader.close()


def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = build_settings(args)

    ensure_directories()
    configure_logging(
        settings.log_level,
        log_file=settings.log_file,
        trace_frames=settings.log_frames,
    )
    logger.info("Verification API: %s%s", settings.api.base_url, settings.api.verify_path)
    if not settings.api.auth_token:
        logger.warning("No API token configured; uploads will be sent unauthenticated")

    try:
        import tkinter as tk
    except ImportError:
        logger.error("Tk is required for the operator window")
        return 1

    from checkpost_verify.app.bridge import AsyncBridge
    from checkpost_verify.app.view import OperatorView

    root = tk.Tk()
    bridge = AsyncBridge(root)
    bridge.start()

    controller = build_controller(settings, success_cue=lambda: bridge.call_in_gui(root.bell))
    view = OperatorView(root, controller, bridge)

    def on_close() -> None:
        view.close()
        future = bridge.run_coroutine(_shutdown(controller))
        try:
            future.result(timeout=SHUTDOWN_TIMEOUT)
        except Exception as e:
            logger.warning("Shutdown did not complete cleanly: %s", e)
        bridge.stop()
        root.destroy()

    root.protocol("WM_DELETE_WINDOW", on_close)
    signal.signal(signal.SIGINT, lambda *_: root.after(0, on_close))

    bridge.run_coroutine(controller.start())
    try:
        root.mainloop()
    except KeyboardInterrupt:
        on_close()
    return 0


def main() -> int:
    return run(sys.argv[1:])


__all__ = ["build_controller", "build_settings", "main", "parse_args", "run"]
