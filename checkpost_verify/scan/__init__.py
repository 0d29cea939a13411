"""QR scanning: decoder, identifier validation, and the scan session."""

from .decoder import CodeDecoder, DecodeStream, ScanWindow, decode_qr_payloads
from .session import ScanSession
from .validator import IDENTIFIER_PATTERN, validate

__all__ = [
    "CodeDecoder",
    "DecodeStream",
    "IDENTIFIER_PATTERN",
    "ScanSession",
    "ScanWindow",
    "decode_qr_payloads",
    "validate",
]
