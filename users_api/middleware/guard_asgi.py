"""ASGI adapter running the middleware pipeline in front of the application."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from users_api.middleware.pipeline import MiddlewarePipeline, RequestContext
from users_api.middleware.request_guard import PayloadTooLarge, RequestGuard, parse_content_length

logger = structlog.get_logger()


class _BodyTooLarge(Exception):
    def __init__(self, received: int) -> None:
        super().__init__(received)
        self.received = received


async def _read_body(receive: Receive, max_bytes: int | None = None) -> bytes:
    """Drain the request body from the ASGI receive channel.

    Raises _BodyTooLarge as soon as more than ``max_bytes`` have arrived, so a
    chunked upload without content-length is never buffered past the limit.
    """
    chunks: list[bytes] = []
    received = 0
    while True:
        message = await receive()
        if message["type"] != "http.request":
            break
        chunk = message.get("body", b"")
        received += len(chunk)
        if max_bytes is not None and received > max_bytes:
            raise _BodyTooLarge(received)
        chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks)


def _replay(body: bytes, receive: Receive) -> Receive:
    """Receive channel that yields ``body`` once, then defers to the real channel."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _body_limit(pipeline: MiddlewarePipeline) -> int | None:
    """Byte limit of the pipeline's enabled RequestGuard, if there is one."""
    guard = pipeline.get_middleware(RequestGuard)
    if guard is None or not pipeline.is_enabled(guard.name):
        return None
    return guard.limits.max_body_bytes


class GuardMiddleware:
    """Run the request pipeline before the application sees the request.

    - The body is buffered so middleware can inspect it and the app can still read it
    - Buffering stops at the RequestGuard byte limit; a longer body gets 413
    - A body rewritten by middleware (``context.extra["modified_body"]``) replaces
      the original, with content-length corrected
    - A short-circuit response from the pipeline is sent instead of calling the app
    - ``context.response_headers`` are added to whichever response goes out

    The pipeline is looked up per request so it can be built in the app lifespan.
    """

    def __init__(self, app: ASGIApp, get_pipeline: Callable[[], MiddlewarePipeline | None]) -> None:
        self.app = app
        self._get_pipeline = get_pipeline

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        pipeline = self._get_pipeline()
        if pipeline is None:
            await self.app(scope, receive, send)
            return

        context = RequestContext()

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in context.response_headers.items():
                    headers[name] = value
            await send(message)

        max_bytes = _body_limit(pipeline)
        declared = parse_content_length(Headers(scope=scope).get("content-length", ""))
        body = b""
        # A declared oversize body is left unread; the guard rejects it from the header.
        if max_bytes is None or declared <= max_bytes:
            try:
                body = await _read_body(receive, max_bytes)
            except _BodyTooLarge as exc:
                logger.warning("request_body_too_large", received=exc.received, max_bytes=max_bytes)
                response = await pipeline.process_response(PayloadTooLarge(max_bytes).to_response(), context)
                await response(scope, receive, send_with_headers)
                return

        request = Request(scope, receive=_replay(body, receive))
        short_circuit = await pipeline.process_request(request, context)
        if short_circuit is not None:
            response = await pipeline.process_response(short_circuit, context)
            await response(scope, receive, send_with_headers)
            return

        forwarded = context.extra.get("modified_body", body)
        if forwarded is not body:
            scope = {**scope, "headers": list(scope.get("headers", []))}
            MutableHeaders(scope=scope)["content-length"] = str(len(forwarded))
            logger.debug("request_body_replaced", original_size=len(body), new_size=len(forwarded))

        await self.app(scope, _replay(forwarded, receive), send_with_headers)
