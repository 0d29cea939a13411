"""Camera platform backends."""

from .opencv_backend import OpenCVCameraBackend, OpenCVStream

__all__ = ["OpenCVCameraBackend", "OpenCVStream"]
