"""Tests for the signing HTTP client."""

import json
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from apiauth.client.client import ApiAuthClient, ApiAuthClientError
from apiauth.hmac.digest import body_digest_header
from apiauth.hmac.secrets import StaticSecretProvider
from apiauth.hmac.signer import SigningError
from apiauth.hmac.validator import AuthenticationValidator


def _mock_response(status: int, body: bytes, headers: dict[str, str] | None = None) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.headers = headers or {}
    mock_response.read = AsyncMock(return_value=body)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)
    return mock_response


@pytest.fixture
def api_client(secret_provider, settings, clock):
    return ApiAuthClient(
        "https://empire.gov/",
        "dvader",
        secret_provider,
        settings=settings,
        clock=clock,
    )


class TestPrepare:
    """Test request construction and signing without I/O."""

    def test_url_resolution(self, api_client):
        assert api_client.url_for("/api/users/dvader") == "https://empire.gov/api/users/dvader"
        assert api_client.url_for("api/users") == "https://empire.gov/api/users"
        assert api_client.url_for("http://other.gov/x") == "http://other.gov/x"

    @pytest.mark.asyncio
    async def test_json_body(self, api_client):
        request = await api_client.prepare("post", "/api/users/dvader", json_body={"bolt": "on"})

        assert request.method == "POST"
        assert request.body == json.dumps({"bolt": "on"}).encode()
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Content-MD5"] == body_digest_header(request.body)
        assert request.headers["Authorization"].startswith("ApiAuth ")

    @pytest.mark.asyncio
    async def test_text_body(self, api_client):
        request = await api_client.prepare("POST", "/api/users/dvader", data="hello")

        assert request.body == b"hello"
        assert request.headers["Content-Type"] == "text/plain; charset=utf-8"

    @pytest.mark.asyncio
    async def test_prepared_request_validates(self, api_client, secret_provider, replay_cache, settings, clock):
        """What the client signs, the server accepts."""
        validator = AuthenticationValidator(secret_provider, replay_cache, settings=settings, clock=clock)
        request = await api_client.prepare(
            "POST",
            "/api/v1/droid/activate-restraining-bolt?id=R2D2",
            json_body={"bolt": "on"},
        )

        result = await validator.validate(request)

        assert result.is_accepted
        assert result.username == "dvader"


class TestRequest:
    """Test sending signed requests."""

    @pytest.mark.asyncio
    async def test_sends_signed_headers(self, api_client):
        async with api_client:
            with patch.object(
                api_client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = _mock_response(200, b'"dvader"')

                response = await api_client.get("/api/users/dvader")

        assert response.status == 200
        assert response.json() == "dvader"
        method, url = mock_request.call_args.args
        headers = mock_request.call_args.kwargs["headers"]
        assert method == "GET"
        assert str(url) == "https://empire.gov/api/users/dvader"
        assert headers["X-ApiAuth-Username"] == "dvader"
        assert headers["Date"] == "Wed, 04 May 1977 16:00:00 GMT"
        assert headers["Authorization"].startswith("ApiAuth ")
        assert mock_request.call_args.kwargs["data"] is None

    @pytest.mark.asyncio
    async def test_percent_escapes_sent_verbatim(self, api_client):
        """The URL on the wire is the URL that was signed."""
        async with api_client:
            with patch.object(
                api_client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = _mock_response(200, b"{}")

                await api_client.get("/api/users/d%20vader")

        _, url = mock_request.call_args.args
        assert url.raw_path == "/api/users/d%20vader"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, api_client):
        async with api_client:
            with patch.object(
                api_client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = _mock_response(401, b'{"error":{}}')

                with pytest.raises(ApiAuthClientError) as exc_info:
                    await api_client.get("/api/users/dvader")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, api_client):
        async with api_client:
            with patch.object(
                api_client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.side_effect = aiohttp.ClientConnectionError("refused")

                with pytest.raises(ApiAuthClientError, match="refused"):
                    await api_client.get("/api/users/dvader")

    @pytest.mark.asyncio
    async def test_response_digest_verified(self, api_client):
        body = b'"dvader"'
        async with api_client:
            with patch.object(
                api_client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = _mock_response(
                    200, body, {"Content-MD5": body_digest_header(body)}
                )

                response = await api_client.get("/api/users/dvader")

        assert response.body == body

    @pytest.mark.asyncio
    async def test_response_digest_mismatch_raises(self, api_client):
        async with api_client:
            with patch.object(
                api_client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = _mock_response(
                    200, b'"lskywalker"', {"Content-MD5": body_digest_header(b'"dvader"')}
                )

                with pytest.raises(ApiAuthClientError, match="Content-MD5"):
                    await api_client.get("/api/users/dvader")

    @pytest.mark.asyncio
    async def test_response_digest_check_disabled(self, secret_provider, settings, clock):
        client = ApiAuthClient(
            "https://empire.gov",
            "dvader",
            secret_provider,
            settings=settings,
            verify_response_digest=False,
            clock=clock,
        )
        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                mock_request.return_value = _mock_response(
                    200, b"tampered", {"Content-MD5": body_digest_header(b"original")}
                )

                response = await client.get("/x")

        assert response.text == "tampered"

    @pytest.mark.asyncio
    async def test_unknown_user_sends_nothing(self, settings, clock):
        client = ApiAuthClient(
            "https://empire.gov",
            "palpatine",
            StaticSecretProvider({}),
            settings=settings,
            clock=clock,
        )
        async with client:
            with patch.object(
                client._ensure_session(), "request", new_callable=AsyncMock
            ) as mock_request:
                with pytest.raises(SigningError):
                    await client.get("/api/users/palpatine")

        mock_request.assert_not_called()
