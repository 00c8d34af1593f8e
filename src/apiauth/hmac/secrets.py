"""Secret lookup for registered principals."""

from __future__ import annotations

import base64
import hashlib
from typing import Mapping, Protocol

from apiauth.common.settings import Settings


class SecretProvider(Protocol):
    """Resolves a username to its shared secret."""

    async def get_secret(self, username: str) -> str | None:
        """Return the secret for ``username`` or None if unregistered."""
        ...


def derive_secret_from_password(password: str) -> str:
    """Derive an API secret as base64(SHA-1(password))."""
    digest = hashlib.sha1(password.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class StaticSecretProvider:
    """In-memory username to secret mapping."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    async def get_secret(self, username: str) -> str | None:
        return self._secrets.get(username)

    def add(self, username: str, secret: str) -> None:
        self._secrets[username] = secret


class HashedPasswordSecretProvider:
    """Derives secrets from stored passwords instead of storing them directly."""

    def __init__(self, passwords: Mapping[str, str] | None = None) -> None:
        self._passwords = dict(passwords or {})

    async def get_secret(self, username: str) -> str | None:
        password = self._passwords.get(username)
        if password is None:
            return None
        return derive_secret_from_password(password)


def provider_from_settings(settings: Settings) -> SecretProvider:
    """Build the secret provider configured through ``APIAUTH_SECRETS``."""
    if settings.secrets_are_passwords:
        return HashedPasswordSecretProvider(settings.secrets)
    return StaticSecretProvider(settings.secrets)
