"""Correlation id for every request.

The id comes from a client-supplied ``X-Request-ID`` when it parses as a
UUID, else a fresh UUID4. It is echoed on the response, bound into the
structlog context and exposed through :func:`get_request_id`, which the
error handlers stamp on problem responses as ``correlation_id``.
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import structlog
from starlette.datastructures import Headers, MutableHeaders

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    """Return the current request ID, or an empty string outside a request."""
    return request_id_ctx.get()


def _resolve_request_id(scope: Scope) -> str:
    supplied = Headers(scope=scope).get(REQUEST_ID_HEADER, "")
    try:
        return str(UUID(supplied))
    except ValueError:
        return str(uuid4())


class RequestIdMiddleware:
    """Pure ASGI middleware that assigns and propagates the request id.

    Client ids that are not UUIDs are replaced, never rejected.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _resolve_request_id(scope)
        token = request_id_ctx.set(request_id)
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
            request_id_ctx.reset(token)
