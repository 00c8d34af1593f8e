"""Client-side request signing."""

from __future__ import annotations

import time
from collections.abc import Callable

from apiauth.common.logging import get_logger
from apiauth.common.metrics import record_signed_request
from apiauth.common.settings import Settings
from apiauth.hmac.canonical import CanonicalRequestBuilder, CanonicalRequestError
from apiauth.hmac.digest import body_digest_header
from apiauth.hmac.headers import (
    AUTHORIZATION_HEADER,
    CONTENT_MD5_HEADER,
    DATE_HEADER,
    DEFAULT_SCHEME,
    format_authorization,
    http_date_from_timestamp,
)
from apiauth.hmac.models import HttpRequest
from apiauth.hmac.secrets import SecretProvider
from apiauth.hmac.signature import sign

logger = get_logger(__name__)


class SigningError(Exception):
    """A request could not be signed and must not be sent."""


class RequestSigner:
    """
    Stamps outgoing requests with identity, date, digest and signature.

    Signing fails closed: if the secret is unavailable or the request cannot
    be canonicalised, ``SigningError`` is raised and the request is left
    without an ``Authorization`` header.
    """

    def __init__(
        self,
        username: str,
        secret_provider: SecretProvider,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings or Settings()
        self._username = username
        self._secret_provider = secret_provider
        self._builder = CanonicalRequestBuilder.from_settings(settings)
        self._scheme = settings.authentication_scheme or DEFAULT_SCHEME
        self._clock = clock

    @property
    def username(self) -> str:
        return self._username

    async def sign(self, request: HttpRequest) -> HttpRequest:
        """
        Sign a request in place.

        Args:
            request: Outgoing request; its headers are mutated

        Returns:
            The same request, for chaining

        Raises:
            SigningError: If no secret is available or the request is not signable
        """
        request.headers.popall(AUTHORIZATION_HEADER, None)

        username_header = self._builder.username_header
        if username_header not in request.headers:
            request.headers[username_header] = self._username
        username = request.headers[username_header]
        if not username.isascii():
            # Header bytes are read back as latin-1 while aiohttp writes UTF-8
            raise SigningError(f"Username {username!r} must be ASCII to travel in {username_header}")

        request.headers[DATE_HEADER] = http_date_from_timestamp(self._clock())

        content_md5 = body_digest_header(request.body)
        if content_md5:
            request.headers[CONTENT_MD5_HEADER] = content_md5
        else:
            request.headers.popall(CONTENT_MD5_HEADER, None)

        try:
            canonical = self._builder.build(request)
        except CanonicalRequestError as exc:
            raise SigningError(f"Request cannot be signed: {exc.message}") from exc

        try:
            secret = await self._secret_provider.get_secret(username)
        except Exception as exc:
            raise SigningError(f"Secret lookup failed for {username!r}: {exc}") from exc
        if secret is None:
            raise SigningError(f"No secret available for {username!r}")

        request.headers[AUTHORIZATION_HEADER] = format_authorization(
            sign(secret, canonical), self._scheme
        )
        record_signed_request(request.method)
        logger.debug("Request signed", method=request.method, url=request.url, username=username)
        return request
