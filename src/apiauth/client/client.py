"""HTTP client that signs every outgoing request with ApiAuth."""

import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp
from multidict import CIMultiDict
from yarl import URL

from apiauth.common.logging import get_logger
from apiauth.common.settings import Settings
from apiauth.common.tracing import traced_request
from apiauth.hmac.digest import digests_match
from apiauth.hmac.headers import CONTENT_MD5_HEADER, CONTENT_TYPE_HEADER
from apiauth.hmac.models import HttpRequest
from apiauth.hmac.secrets import SecretProvider
from apiauth.hmac.signer import RequestSigner

logger = get_logger(__name__)


class ApiAuthClientError(Exception):
    """Error talking to an ApiAuth-protected API."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ApiAuthResponse:
    """Buffered response of a signed request."""

    status: int
    headers: Mapping[str, str]
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def json(self) -> Any:
        return json.loads(self.body)


def _encode_body(
    json_body: Any | None,
    data: bytes | str | None,
    content_type: str | None,
) -> tuple[bytes | None, str | None]:
    if json_body is not None:
        return json.dumps(json_body).encode("utf-8"), content_type or "application/json"
    if isinstance(data, str):
        return data.encode("utf-8"), content_type or "text/plain; charset=utf-8"
    return data, content_type


class ApiAuthClient:
    """
    Async HTTP client for ApiAuth-protected APIs.

    Each request is signed by a ``RequestSigner`` just before it is sent, so
    its ``Date`` header is always current. Responses that carry a
    ``Content-MD5`` header are checked against their body.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        secret_provider: SecretProvider,
        settings: Settings | None = None,
        verify_response_digest: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL of the API
            username: Principal the requests are signed for
            secret_provider: Source of the principal's secret
            settings: Protocol configuration
            verify_response_digest: Reject responses whose Content-MD5 does not match
            clock: Source of the current POSIX time
        """
        settings = settings or Settings()
        self._base_url = base_url.rstrip("/")
        self._signer = RequestSigner(username, secret_provider, settings=settings, clock=clock)
        self._timeout = aiohttp.ClientTimeout(total=settings.http_timeout)
        self._verify_response_digest = verify_response_digest
        self._session: aiohttp.ClientSession | None = None

    @property
    def signer(self) -> RequestSigner:
        return self._signer

    async def __aenter__(self) -> "ApiAuthClient":
        """Enter async context."""
        self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists."""
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def url_for(self, path: str) -> str:
        """Resolve a path against the base URL; absolute URLs pass through."""
        if "://" in path:
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def prepare(
        self,
        method: str,
        path: str,
        json_body: Any | None = None,
        data: bytes | str | None = None,
        content_type: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> HttpRequest:
        """Build and sign a request without sending it."""
        body, content_type = _encode_body(json_body, data, content_type)
        request = HttpRequest(
            method=method.upper(),
            url=self.url_for(path),
            headers=CIMultiDict(headers or {}),
            body=body,
        )
        if content_type:
            request.headers[CONTENT_TYPE_HEADER] = content_type
        return await self._signer.sign(request)

    @traced_request
    async def request(
        self,
        method: str,
        path: str,
        json_body: Any | None = None,
        data: bytes | str | None = None,
        content_type: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> ApiAuthResponse:
        """
        Sign and send a request.

        Raises:
            SigningError: If the request cannot be signed (nothing is sent)
            ApiAuthClientError: On transport failure, non-2xx status or a
                response digest mismatch
        """
        request = await self.prepare(method, path, json_body, data, content_type, headers)
        session = self._ensure_session()

        logger.debug("Sending signed request", method=request.method, url=request.url)
        try:
            response = await session.request(
                request.method,
                URL(request.url, encoded=True),
                headers=request.headers,
                data=request.body,
            )
        except aiohttp.ClientError as e:
            raise ApiAuthClientError(f"Request failed: {e}") from e

        async with response:
            payload = await response.read()
            result = ApiAuthResponse(
                status=response.status,
                headers=CIMultiDict(response.headers),
                body=payload,
            )

        if result.status >= 400:
            raise ApiAuthClientError(
                f"{request.method} {request.url} failed with {result.status}: {payload[:200]!r}",
                result.status,
            )

        declared = result.headers.get(CONTENT_MD5_HEADER)
        if self._verify_response_digest and declared and not digests_match(declared, payload):
            raise ApiAuthClientError(
                f"Response Content-MD5 mismatch for {request.method} {request.url}",
                result.status,
            )
        return result

    async def get(self, path: str, **kwargs: Any) -> ApiAuthResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> ApiAuthResponse:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> ApiAuthResponse:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ApiAuthResponse:
        return await self.request("DELETE", path, **kwargs)
