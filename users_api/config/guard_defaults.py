"""Default request guard limits and informational response headers."""

from __future__ import annotations

MAX_BODY_BYTES = 1_048_576  # 1MB
MAX_DEPTH = 10
MAX_STRING_LENGTH = 10_000

ALLOWED_CONTENT_TYPES: list[str] = [
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
]

# Advertised only; no limiter enforces it
RATE_LIMIT_HEADER_VALUE = 100
