"""ApiAuth client components."""

from apiauth.client.client import ApiAuthClient, ApiAuthClientError, ApiAuthResponse

__all__ = [
    "ApiAuthClient",
    "ApiAuthClientError",
    "ApiAuthResponse",
]
