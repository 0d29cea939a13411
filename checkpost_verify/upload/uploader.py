"""Verification API client: one multipart POST per confirmed photograph."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Union

import aiohttp

from checkpost_verify.core.logging_utils import LoggerLike, ensure_structured_logger
from checkpost_verify.capture.session import CapturedImage

DEFAULT_API_BASE_URL = "http://localhost:3000/api"
DEFAULT_VERIFY_PATH = "/checkpost/verify"

TokenProvider = Callable[[], Optional[str]]
UnauthorizedHook = Callable[[int], Union[None, Awaitable[None]]]


class UploadFailureReason(Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one upload. ``reason`` is advisory; callers only branch on ``ok``."""

    ok: bool
    reason: Optional[UploadFailureReason] = None
    status: Optional[int] = None
    detail: str = ""

    @classmethod
    def success(cls, status: int, detail: str = "") -> "UploadResult":
        return cls(ok=True, status=status, detail=detail)

    @classmethod
    def failure(cls, reason: UploadFailureReason, detail: str = "", status: Optional[int] = None) -> "UploadResult":
        return cls(ok=False, reason=reason, status=status, detail=detail)


class VerificationApi(Protocol):
    async def verify(self, identifier: str, image: CapturedImage) -> UploadResult: ...

    async def close(self) -> None: ...


class VerificationUploader:
    """Posts ``vehicleId`` + ``image`` to the verification endpoint.

    Never raises for transport or server failures; they come back as a failed
    ``UploadResult``. Cancellation propagates.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        verify_path: str = DEFAULT_VERIFY_PATH,
        *,
        token_provider: Optional[TokenProvider] = None,
        on_unauthorized: Optional[UnauthorizedHook] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.url = base_url.rstrip("/") + "/" + verify_path.lstrip("/")
        self._token_provider = token_provider
        self._on_unauthorized = on_unauthorized
        self._timeout = timeout if timeout and timeout > 0 else None
        self._session = session
        self._owns_session = session is None
        self.logger = ensure_structured_logger(logger, component="Uploader", fallback_name=__name__)

    async def verify(self, identifier: str, image: CapturedImage) -> UploadResult:
        form = aiohttp.FormData()
        form.add_field("vehicleId", identifier)
        form.add_field("image", image.data, filename=f"{identifier}.jpg", content_type=image.mime_type)

        headers = {}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.logger.info("Uploading %s (%d bytes) to %s", identifier, len(image.data), self.url)
        session = self._get_session()
        try:
            async with session.post(
                self.url,
                data=form,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                status = response.status
                message = await self._read_message(response)
        except asyncio.TimeoutError:
            self.logger.warning("Upload for %s timed out after %ss", identifier, self._timeout)
            return UploadResult.failure(UploadFailureReason.TIMEOUT, "Upload timed out")
        except aiohttp.ClientError as exc:
            self.logger.warning("Upload for %s failed: %s", identifier, exc)
            return UploadResult.failure(UploadFailureReason.NETWORK, str(exc) or type(exc).__name__)

        if 200 <= status < 300:
            self.logger.info("Verification accepted for %s (HTTP %d)", identifier, status)
            return UploadResult.success(status, message)

        if status in (401, 403):
            self.logger.warning("Verification unauthorized for %s (HTTP %d)", identifier, status)
            await self._notify_unauthorized(status)
            detail = message or ("Session expired" if status == 401 else "Invalid token")
            return UploadResult.failure(UploadFailureReason.UNAUTHORIZED, detail, status)

        self.logger.warning("Verification rejected for %s (HTTP %d): %s", identifier, status, message)
        return UploadResult.failure(UploadFailureReason.REJECTED, message or f"HTTP {status}", status)

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and self._owns_session and not session.closed:
            await session.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _read_message(self, response: aiohttp.ClientResponse) -> str:
        if response.content_type == "application/json":
            try:
                payload = await response.json()
            except ValueError:
                return ""
            if isinstance(payload, dict):
                return str(payload.get("message") or "")
            return ""
        return (await response.text()).strip()[:200]

    async def _notify_unauthorized(self, status: int) -> None:
        if self._on_unauthorized is None:
            return
        try:
            result = self._on_unauthorized(status)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            self.logger.exception("Unauthorized hook failed")


__all__ = [
    "DEFAULT_API_BASE_URL",
    "DEFAULT_VERIFY_PATH",
    "UploadFailureReason",
    "UploadResult",
    "VerificationApi",
    "VerificationUploader",
]
