"""Vehicle identifier format check."""

from __future__ import annotations

import re
from typing import Optional

# Two digits, hyphen, two digits, hyphen, three digits. ASCII digits only.
IDENTIFIER_PATTERN = re.compile(r"[0-9]{2}-[0-9]{2}-[0-9]{3}")


def validate(text: object) -> Optional[str]:
    """Return ``text`` unchanged if it is a well-formed identifier, else None.

    No trimming or case folding is done: surrounding whitespace is a rejection.
    """
    if not isinstance(text, str):
        return None
    if IDENTIFIER_PATTERN.fullmatch(text) is None:
        return None
    return text


__all__ = ["IDENTIFIER_PATTERN", "validate"]
