"""Canonical string representation of a request for signing."""

from __future__ import annotations

from datetime import datetime

from apiauth.common.settings import Settings
from apiauth.hmac.headers import (
    CONTENT_MD5_HEADER,
    DATE_HEADER,
    DEFAULT_USERNAME_HEADER,
    canonical_uri,
    format_http_date,
    parse_http_date,
)
from apiauth.hmac.models import HttpRequest, RejectReason

DEFAULT_MEDIA_TYPES: tuple[str, ...] = (
    "application/x-www-form-urlencoded",
    "application/json",
    "text/plain",
)


class CanonicalRequestError(Exception):
    """A request lacks what is needed to build its canonical representation."""

    def __init__(self, reason: RejectReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


def join_canonical(
    method: str,
    content_md5: str,
    date: str,
    username: str,
    uri: str,
) -> str:
    """Join the five canonical fields in wire order."""
    return "\n".join([method, content_md5, date, username, uri])


class CanonicalRequestBuilder:
    """
    Builds the newline-joined representation both sides sign.

    Fields, in order: upper-cased HTTP method, ``Content-MD5`` header value
    (or empty), RFC-1123 date, username, lower-cased absolute URI. Signer and
    validator must use the same builder configuration or every signature
    will mismatch.
    """

    def __init__(
        self,
        username_header: str = DEFAULT_USERNAME_HEADER,
        valid_media_types: tuple[str, ...] = DEFAULT_MEDIA_TYPES,
    ) -> None:
        self._username_header = username_header
        self._valid_media_types = frozenset(m.lower() for m in valid_media_types)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CanonicalRequestBuilder":
        return cls(
            username_header=settings.username_header,
            valid_media_types=settings.valid_content_media_types,
        )

    @property
    def username_header(self) -> str:
        return self._username_header

    def is_media_type_allowed(self, media_type: str | None) -> bool:
        return media_type is not None and media_type.lower() in self._valid_media_types

    def check_preconditions(self, request: HttpRequest) -> datetime:
        """
        Validate the headers the representation depends on.

        Returns:
            The parsed request date

        Raises:
            CanonicalRequestError: With the reason of the first failing check
        """
        date = parse_http_date(request.header(DATE_HEADER))
        if date is None:
            raise CanonicalRequestError(
                RejectReason.MALFORMED_CANONICAL_INPUT,
                "Date header missing or not an RFC-1123 HTTP-date",
            )

        if not request.header(self._username_header):
            raise CanonicalRequestError(
                RejectReason.MISSING_CREDENTIALS,
                f"{self._username_header} header missing",
            )

        if request.has_body:
            if not self.is_media_type_allowed(request.content_type):
                raise CanonicalRequestError(
                    RejectReason.CONTENT_INTEGRITY_FAILURE,
                    f"Content type {request.content_type!r} is not accepted for signed bodies",
                )
            content_md5 = request.header(CONTENT_MD5_HEADER)
            if not content_md5 or not content_md5.strip():
                raise CanonicalRequestError(
                    RejectReason.CONTENT_INTEGRITY_FAILURE,
                    "Content-MD5 header required when a body is present",
                )

        return date

    def build(self, request: HttpRequest) -> str:
        """
        Build the canonical representation of a request.

        Raises:
            CanonicalRequestError: If a precondition fails or the URI is not absolute
        """
        date = self.check_preconditions(request)

        try:
            uri = canonical_uri(request.url)
        except ValueError as exc:
            raise CanonicalRequestError(RejectReason.MALFORMED_CANONICAL_INPUT, str(exc)) from exc

        content_md5 = (request.header(CONTENT_MD5_HEADER) or "").strip()
        username = request.header(self._username_header) or ""

        return join_canonical(
            request.method.upper(),
            content_md5,
            format_http_date(date),
            username,
            uri,
        )
