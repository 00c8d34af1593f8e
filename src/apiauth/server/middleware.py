"""Starlette middleware enforcing ApiAuth request signatures."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from multidict import CIMultiDict
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from apiauth.common.errors import ErrorCode, error_response
from apiauth.common.http import bind_principal, get_request_id
from apiauth.common.settings import Settings
from apiauth.hmac.digest import body_digest_header
from apiauth.hmac.headers import CONTENT_MD5_HEADER, WWW_AUTHENTICATE_HEADER
from apiauth.hmac.models import AuthOutcome, AuthResult, HttpRequest
from apiauth.hmac.validator import AuthenticationValidator


def absolute_url(request: Request) -> str:
    """
    Reconstruct the absolute request URI as the client addressed it.

    The path is taken from ``raw_path`` so percent-escapes survive exactly as
    sent; Starlette's ``request.url`` would decode them.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(request.url.path)

    url = f"{request.url.scheme}://{request.url.netloc}{path}"
    query_string = request.scope.get("query_string", b"")
    if query_string:
        url = f"{url}?{query_string.decode('latin-1')}"
    return url


async def to_http_request(request: Request) -> HttpRequest:
    """Buffer a Starlette request into an ``HttpRequest`` view."""
    body = await request.body()
    headers: CIMultiDict[str] = CIMultiDict(
        (name.decode("latin-1"), value.decode("latin-1")) for name, value in request.headers.raw
    )
    return HttpRequest(
        method=request.method,
        url=absolute_url(request),
        headers=headers,
        body=body or None,
    )


class HmacAuthMiddleware(BaseHTTPMiddleware):
    """Rejects requests that do not carry a valid, fresh ApiAuth signature."""

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings,
        validator: AuthenticationValidator,
    ) -> None:
        super().__init__(app)
        self._settings = settings
        self._validator = validator
        self._exempt_paths = set(settings.auth_exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        http_request = await to_http_request(request)
        result = await self._validator.validate(http_request)

        if result.outcome == AuthOutcome.ACCEPTED:
            request.state.auth = result
            bind_principal(result.username)
            return await call_next(request)

        if result.outcome == AuthOutcome.INFRASTRUCTURE_ERROR:
            return error_response(
                ErrorCode.AUTH_UNAVAILABLE,
                "Authentication is temporarily unavailable",
                status_code=500,
            )

        return self._unauthorized(result)

    def _unauthorized(self, result: AuthResult) -> Response:
        details: dict[str, Any] | None = None
        if self._settings.debug_diagnostics:
            details = {
                "reason": result.reason.value if result.reason else None,
                "detail": result.message,
                "time_delta": result.time_delta,
                "request_id": get_request_id(),
                "diagnostics": result.diagnostics,
            }
        return error_response(
            ErrorCode.UNAUTHORIZED,
            self._settings.unauthorized_message,
            status_code=401,
            details=details,
            headers={WWW_AUTHENTICATE_HEADER: self._settings.authentication_scheme},
        )


class ResponseContentMd5Middleware(BaseHTTPMiddleware):
    """Adds a ``Content-MD5`` header to successful responses with a body."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if not 200 <= response.status_code < 300 or CONTENT_MD5_HEADER in response.headers:
            return response

        chunks: list[bytes] = []
        async for chunk in response.body_iterator:  # type: ignore[attr-defined]
            chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
        body = b"".join(chunks)

        buffered = Response(
            content=body,
            status_code=response.status_code,
            background=response.background,
        )
        buffered.raw_headers = list(response.raw_headers)
        content_md5 = body_digest_header(body)
        if content_md5:
            buffered.headers[CONTENT_MD5_HEADER] = content_md5
        return buffered
