"""Per-request logging context: request id and authenticated principal."""

from __future__ import annotations

import contextvars
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

REQUEST_ID_HEADER = "X-Request-ID"

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "apiauth_request_id",
    default=None,
)


def get_request_id() -> str | None:
    """Id of the request being served, if any."""
    return _request_id.get()


def bind_principal(username: str | None) -> None:
    """Attach the authenticated username to every later log line of the request."""
    if username is not None:
        structlog.contextvars.bind_contextvars(principal=username)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id.

    A client-supplied ``X-Request-ID`` is reused so a signed call can be
    followed from the client log to the server's rejection entry. The id is
    echoed on the response and bound into the structlog context together with
    the method and path.
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
            response.headers.setdefault(self._header_name, request_id)
            return response
        finally:
            structlog.contextvars.clear_contextvars()
            _request_id.reset(token)
