from __future__ import annotations

import pytest

from pandora_bot.triggers import clean_trigger


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Hello", "hello"),
        ("  What's   UP?? ", "whats up"),
        ("tab\tand\nnewline", "tab and newline"),
        ("a + b = c", "a b c"),
        ("smile \U0001F642 please", "smile please"),
        ("Ünïcödé Wörds", "ünïcödé wörds"),
        ("trailing $", "trailing"),
        ("...", ""),
        ("", ""),
    ],
)
def test_clean_trigger(raw: str, expected: str) -> None:
    assert clean_trigger(raw) == expected


def test_clean_trigger_is_idempotent() -> None:
    once = clean_trigger("  Mixed-CASE,  words + symbols  ")
    assert clean_trigger(once) == once
