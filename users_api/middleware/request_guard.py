"""Request guard middleware: body size, media type and nesting limits plus XSS scrubbing.

Checks run in a fixed order and stop at the first failure:

1. ``content-length`` above the byte limit -> 413
2. non-empty ``content-type`` matching no allowed type -> 415
3. JSON body nested deeper than the depth limit -> 400
4. every string leaf of the JSON body is scrubbed in place

Requests that pass get ``X-RateLimit-Limit`` and ``X-Content-Type-Options``
response headers. Rejections do not.
"""

from __future__ import annotations

import json
import string
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from users_api.config import guard_defaults
from users_api.config.loader import ServiceSettings, get_settings
from users_api.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

# Scrubbing runs as one left-to-right pass over a character stack. A pattern
# is removed as soon as its last character arrives, so text that only forms a
# pattern after an inner removal (``jajavascript:vascript:``) is caught too,
# and no character is pushed or popped more than once.
_ASCII_WORD = frozenset(string.ascii_letters + string.digits + "_")
_ASCII_SPACE = frozenset(" \t\n\r\f\v")
_SCRIPT_OPEN = "<script"
_SCRIPT_CLOSE = "</script>"
_JS_SCHEME = "javascript:"


def _is_word(char: str) -> bool:
    return char.isalnum() or char == "_"


class _Scrubber:
    """Character stack that drops XSS patterns as they complete.

    Removed, case-insensitively:

    - ``<script`` (followed by a non-word character) through the first
      ``</script>`` after it
    - ``javascript:``
    - an inline handler: ``on`` plus at least one more ASCII word character
      inside a word, optional whitespace, then ``=``. The cut starts at the
      first such ``on`` of the word, so ``xonclick=`` leaves ``x``.

    ``marks[i]`` holds, for an ASCII word character, the index of the first
    usable ``on`` in its word so far (-1 if none), and for whitespace, the
    index of the last character before the whitespace run.
    """

    def __init__(self) -> None:
        self.chars: list[str] = []
        self.marks: list[int] = []
        self.openers: list[int] = []

    def _tail(self, length: int) -> str:
        return "".join(self.chars[-length:]).lower()

    def _truncate(self, size: int) -> None:
        del self.chars[size:]
        del self.marks[size:]
        while self.openers and self.openers[-1] >= size:
            self.openers.pop()

    def _handler_start(self) -> int:
        end = len(self.chars) - 1
        if end >= 0 and self.chars[end] in _ASCII_SPACE:
            end = self.marks[end]
        if end < 0 or self.chars[end] not in _ASCII_WORD:
            return -1
        return self.marks[end]

    def push(self, char: str) -> None:
        chars = self.chars
        size = len(chars)

        if char == ":" and size >= 10 and self._tail(10) == _JS_SCHEME[:-1]:
            self._truncate(size - 10)
            return
        if char == "=":
            start = self._handler_start()
            if start >= 0:
                self._truncate(start)
                return
        if char == ">" and self.openers and size >= 8 and self._tail(8) == _SCRIPT_CLOSE[:-1]:
            if self.openers[0] < size - 8:
                self._truncate(self.openers[0])
                return

        if char in _ASCII_WORD:
            first_on = -1
            if size and chars[-1] in _ASCII_WORD and self.marks[-1] >= 0:
                first_on = self.marks[-1]
            elif size >= 2 and chars[-2] in "oO" and chars[-1] in "nN":
                first_on = size - 2
            self.marks.append(first_on)
        elif char in _ASCII_SPACE:
            if size and chars[-1] in _ASCII_SPACE:
                self.marks.append(self.marks[-1])
            else:
                self.marks.append(size - 1)
        else:
            self.marks.append(-1)

        if not _is_word(char) and size >= 7 and chars[-7] == "<" and self._tail(7) == _SCRIPT_OPEN:
            self.openers.append(size - 7)
        chars.append(char)

    def result(self) -> str:
        return "".join(self.chars)


def _may_contain_xss(value: str) -> bool:
    if "=" in value:
        return True
    lowered = value.lower()
    return _JS_SCHEME in lowered or _SCRIPT_CLOSE in lowered


@dataclass(frozen=True)
class GuardLimits:
    """Limits applied by the guard."""

    max_body_bytes: int = guard_defaults.MAX_BODY_BYTES
    max_depth: int = guard_defaults.MAX_DEPTH
    max_string_length: int = guard_defaults.MAX_STRING_LENGTH
    allowed_content_types: tuple[str, ...] = field(
        default_factory=lambda: tuple(guard_defaults.ALLOWED_CONTENT_TYPES)
    )
    rate_limit_header: int = guard_defaults.RATE_LIMIT_HEADER_VALUE

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> GuardLimits:
        return cls(
            max_body_bytes=settings.max_body_bytes,
            max_depth=settings.max_depth,
            max_string_length=settings.max_string_length,
            allowed_content_types=tuple(settings.allowed_content_types),
            rate_limit_header=settings.rate_limit_header,
        )


# ── Rejections ──────────────────────────────────────────────────────────


class GuardRejection(Exception):
    """A request refused by the guard. Carries the HTTP status and JSON payload."""

    status_code: int = 400
    reason: str = "Request rejected"

    def __init__(self, **details: Any) -> None:
        super().__init__(self.reason)
        self.details = details

    @property
    def payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.reason, **self.details}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.payload)


class PayloadTooLarge(GuardRejection):
    status_code = 413
    reason = "Request entity too large"

    def __init__(self, max_bytes: int) -> None:
        super().__init__(maxSize=f"{max_bytes} bytes")


class UnsupportedMediaType(GuardRejection):
    status_code = 415
    reason = "Unsupported media type"

    def __init__(self, allowed_types: tuple[str, ...] | list[str]) -> None:
        super().__init__(allowedTypes=list(allowed_types))


class ExcessiveNesting(GuardRejection):
    status_code = 400
    reason = "Request object too deeply nested"

    def __init__(self, max_depth: int) -> None:
        super().__init__(maxDepth=max_depth)


# ── Pure checks ─────────────────────────────────────────────────────────


def _header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup; missing headers read as ''."""
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
        return ""
    return value


def parse_content_length(value: str) -> int:
    """Parse a content-length header. Anything but plain ASCII digits counts as 0."""
    if not isinstance(value, str):
        return 0
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return 0
    return int(value)


def _children(value: Any) -> list[Any] | None:
    if isinstance(value, dict):
        return list(value.values())
    if isinstance(value, list):
        return value
    return None


def get_depth(body: Any) -> int:
    """Nesting depth of a JSON-like value.

    A scalar's depth is the number of containers above it. An empty
    container counts as deep as its own position.
    """
    deepest = 0
    stack: list[tuple[Any, int]] = [(body, 0)]
    while stack:
        value, depth = stack.pop()
        deepest = max(deepest, depth)
        children = _children(value)
        if children:
            stack.extend((child, depth + 1) for child in children)
    return deepest


def sanitize_string(value: str, max_length: int = guard_defaults.MAX_STRING_LENGTH) -> str:
    """Strip script blocks, ``javascript:`` and inline handlers, then truncate.

    The result contains none of the patterns, so scrubbing is idempotent and
    input like ``jajavascript:vascript:`` cannot reassemble a payload. Runs in
    time linear in the length of ``value``.
    """
    if _may_contain_xss(value):
        scrubber = _Scrubber()
        for char in value:
            scrubber.push(char)
        value = scrubber.result()
    if len(value) > max_length:
        value = value[:max_length]
    return value


def sanitize_body(body: Any, max_string_length: int = guard_defaults.MAX_STRING_LENGTH) -> int:
    """Scrub every string leaf of ``body`` in place. Returns how many changed.

    Both dicts and lists are descended into. Keys and non-string scalars are
    left alone, so the shape of the body never changes.
    """
    if isinstance(body, dict):
        keys: list[Any] = list(body.keys())
    elif isinstance(body, list):
        keys = list(range(len(body)))
    else:
        return 0

    changed = 0
    for key in keys:
        value = body[key]
        if isinstance(value, str):
            cleaned = sanitize_string(value, max_string_length)
            if cleaned != value:
                body[key] = cleaned
                changed += 1
        elif isinstance(value, (dict, list)):
            changed += sanitize_body(value, max_string_length)
    return changed


def check_headers(headers: Mapping[str, str], limits: GuardLimits) -> None:
    """Apply the size and media type checks. Raises GuardRejection."""
    content_length = parse_content_length(_header(headers, "content-length"))
    if content_length > limits.max_body_bytes:
        raise PayloadTooLarge(limits.max_body_bytes)

    content_type = _header(headers, "content-type")
    if content_type and not any(allowed in content_type for allowed in limits.allowed_content_types):
        raise UnsupportedMediaType(limits.allowed_content_types)


def check_body(body: Any, limits: GuardLimits) -> int:
    """Apply the depth check, then scrub the body in place.

    Returns the number of string fields rewritten. Scalars and ``None``
    pass untouched.
    """
    if not isinstance(body, (dict, list)):
        return 0
    if get_depth(body) > limits.max_depth:
        raise ExcessiveNesting(limits.max_depth)
    return sanitize_body(body, limits.max_string_length)


def inspect_request(headers: Mapping[str, str], body: Any, limits: GuardLimits | None = None) -> int:
    """Run every guard check against a parsed request.

    Raises a GuardRejection subclass on the first failing check. On success
    ``body`` has been scrubbed in place and the number of rewritten string
    fields is returned.
    """
    limits = limits or GuardLimits()
    check_headers(headers, limits)
    return check_body(body, limits)


# ── Middleware ──────────────────────────────────────────────────────────


class RequestGuard(Middleware):
    """Reject oversized, mistyped or deeply nested requests and scrub JSON bodies.

    JSON bodies are decoded here; a rewritten body is stored in
    ``context.extra["modified_body"]`` for the ASGI layer to forward.
    Bodies of other allowed media types, and bodies that are not valid
    JSON, only go through the header checks.
    """

    def __init__(self, limits: GuardLimits | None = None) -> None:
        self._limits = limits

    @property
    def limits(self) -> GuardLimits:
        if self._limits is not None:
            return self._limits
        return GuardLimits.from_settings(get_settings())

    async def process_request(self, request: Request, context: RequestContext) -> Request | Response | None:
        limits = self.limits
        try:
            check_headers(request.headers, limits)
            body = await self._read_json(request, limits)
            changed = check_body(body, limits)
        except GuardRejection as exc:
            logger.warning(
                "request_guard_rejected",
                reason=exc.reason,
                status=exc.status_code,
                method=request.method,
                path=request.url.path,
            )
            return exc.to_response()

        if changed:
            context.extra["modified_body"] = json.dumps(body).encode("utf-8")
            context.extra["sanitized_fields"] = changed
            logger.info("request_body_sanitized", fields=changed, path=request.url.path)

        context.response_headers["X-RateLimit-Limit"] = str(limits.rate_limit_header)
        context.response_headers["X-Content-Type-Options"] = "nosniff"
        return None

    @staticmethod
    async def _read_json(request: Request, limits: GuardLimits) -> Any:
        """Decode a JSON body, or return None when there is nothing to inspect."""
        if "application/json" not in request.headers.get("content-type", ""):
            return None
        raw = await request.body()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("request_guard_unparseable_json", path=request.url.path)
            return None
        except RecursionError:
            # Too deep for the decoder itself
            raise ExcessiveNesting(limits.max_depth) from None
