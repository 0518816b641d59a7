"""Context injector middleware: assigns the request ID and binds it for logging."""

from __future__ import annotations

import structlog
from starlette.requests import Request
from starlette.responses import Response

from users_api.middleware.pipeline import Middleware, RequestContext
from users_api.utils.sanitize import strip_control_chars

logger = structlog.get_logger()

_MAX_REQUEST_ID_LENGTH = 256


class ContextInjector(Middleware):
    """Attach request identity to the context and structured logs.

    - Echoes the generated request ID as X-Request-ID on every response
    - Preserves a client-supplied X-Request-ID as X-Original-Request-ID
    - Binds request_id, method and path to structlog contextvars
    """

    async def process_request(self, request: Request, context: RequestContext) -> Request | Response | None:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=context.request_id,
            method=request.method,
            path=request.url.path,
        )

        context.response_headers["X-Request-ID"] = context.request_id

        # Sanitize at storage time so the value is safe to log and echo
        client_request_id = request.headers.get("x-request-id")
        if client_request_id:
            original = strip_control_chars(client_request_id[:_MAX_REQUEST_ID_LENGTH])
            context.extra["original_request_id"] = original
            context.response_headers["X-Original-Request-ID"] = original

        logger.debug("context_injected", client_ip=request.client.host if request.client else "unknown")
        return None
