"""Checkpoint vehicle verification: scan a QR identifier, photograph, upload."""

__version__ = "1.0.0"

__all__ = ["__version__"]
