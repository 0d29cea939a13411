"""Verification upload client."""

from .uploader import (
    DEFAULT_API_BASE_URL,
    DEFAULT_VERIFY_PATH,
    UploadFailureReason,
    UploadResult,
    VerificationApi,
    VerificationUploader,
)

__all__ = [
    "DEFAULT_API_BASE_URL",
    "DEFAULT_VERIFY_PATH",
    "UploadFailureReason",
    "UploadResult",
    "VerificationApi",
    "VerificationUploader",
]
