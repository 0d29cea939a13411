"""Operator-facing application: configuration, Tk window, launcher.

``view`` and ``bridge`` import tkinter and are not imported here.
"""

from .config import ApiSettings, AppSettings, ConfigLoader, load_settings

__all__ = ["ApiSettings", "AppSettings", "ConfigLoader", "load_settings"]
