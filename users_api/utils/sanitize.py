"""Shared sanitization utilities."""

from __future__ import annotations

import re

# C0 controls, DEL, C1 controls, line/paragraph separators, bidi overrides, BOM
CONTROL_CHARS_RE = re.compile(
    r"[\x00-\x1f\x7f-\x9f\u2028\u2029\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)

# Characters stripped from free-text user input
_ANGLE_BRACKETS_RE = re.compile(r"[<>]")


def strip_control_chars(value: str) -> str:
    """Strip all control characters from a string."""
    return CONTROL_CHARS_RE.sub("", value)


def strip_angle_brackets(value: str) -> str:
    """Remove ``<`` and ``>`` so the value cannot open or close a tag."""
    return _ANGLE_BRACKETS_RE.sub("", value)
