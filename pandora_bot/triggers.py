"""Trigger normalisation shared by the stores and the chat layer."""
from __future__ import annotations

import unicodedata


def clean_trigger(trigger: str) -> str:
    """Normalise a trigger phrase for use as an index key.

    Letters and digits are kept (lower-cased), whitespace and symbol
    characters collapse into single spaces, and anything else (punctuation,
    control characters) is dropped. ``"  What's   UP?? "`` becomes
    ``"whats up"``.
    """

    result: list[str] = []
    for char in trigger.strip().lower():
        if char.isalnum():
            result.append(char)
        elif char.isspace() or unicodedata.category(char).startswith("S"):
            if result and result[-1] != " ":
                result.append(" ")
    return "".join(result).rstrip(" ")


__all__ = ["clean_trigger"]
