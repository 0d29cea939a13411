"""Confirmation photograph capture."""

from .session import CAPTURE_CONSTRAINTS, CaptureSession, CapturedImage, encode_jpeg

__all__ = ["CAPTURE_CONSTRAINTS", "CaptureSession", "CapturedImage", "encode_jpeg"]
