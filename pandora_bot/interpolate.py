"""``${key}`` expansion for stored responses."""
from __future__ import annotations

from typing import Callable, Mapping, Optional, Union

from .errors import InterpolationError

Value = Union[str, Callable[[], str]]

_ESCAPES = {"$": "$", "n": "\n", "r": "\r", "t": "\t", "\\": "\\"}


def _fetch(lookup: Optional[Mapping[str, Value]], key: str) -> str:
    if not lookup or key not in lookup:
        return ""
    value = lookup[key]
    if callable(value):
        return str(value())
    return str(value)


def interpolate(text: str, lookup: Optional[Mapping[str, Value]] = None) -> str:
    """Replace ``${key}`` with values from ``lookup``.

    Values may be strings or zero-argument callables, which are only invoked
    when their key appears. Unknown keys expand to nothing. Backslash escapes
    ``\\$ \\n \\r \\t \\\\`` are honoured, ``$$`` yields a literal ``$`` and a
    ``$`` not followed by ``{`` is kept as is.
    """

    out: list[str] = []
    key: list[str] = []
    state = "text"
    for char in text:
        if state == "key":
            if char == "}":
                out.append(_fetch(lookup, "".join(key)))
                key.clear()
                state = "text"
            else:
                key.append(char)
        elif state == "dollar":
            if char == "{":
                state = "key"
            elif char == "$":
                out.append("$")
            elif char == "\\":
                out.append("$")
                state = "escape"
            else:
                out.append("$" + char)
                state = "text"
        elif state == "escape":
            out.append(_ESCAPES.get(char, "\\" + char))
            state = "text"
        elif char == "$":
            state = "dollar"
        elif char == "\\":
            state = "escape"
        else:
            out.append(char)

    if state == "dollar":
        out.append("$")
    elif state == "key":
        raise InterpolationError(f"unterminated interpolation in {text!r}")
    return "".join(out)


__all__ = ["interpolate"]
