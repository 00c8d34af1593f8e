"""Shared error helpers and codes."""

from __future__ import annotations

from typing import Any, Mapping

from starlette.responses import JSONResponse


class ErrorCode:
    UNAUTHORIZED = "unauthorized"
    AUTH_UNAVAILABLE = "authentication_unavailable"
    BAD_REQUEST = "bad_request"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(payload, status_code=status_code, headers=headers)
