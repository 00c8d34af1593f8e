"""HMAC-SHA256 signatures over canonical request strings."""

from __future__ import annotations

import base64
import hashlib
import hmac


def _secret_bytes(secret: str | bytes) -> bytes:
    if isinstance(secret, bytes):
        return secret
    return secret.encode("utf-8")


def sign(secret: str | bytes, canonical: str) -> str:
    """
    Compute the base64-encoded HMAC-SHA256 of a canonical string.

    Args:
        secret: Shared secret (text secrets are UTF-8 encoded)
        canonical: Canonical request representation

    Returns:
        Base64 signature
    """
    digest = hmac.new(_secret_bytes(secret), canonical.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def signatures_equal(expected: str, provided: str) -> bool:
    """Compare two signatures in constant time."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def verify(secret: str | bytes, canonical: str, signature: str) -> bool:
    """Verify a signature in constant time."""
    return signatures_equal(sign(secret, canonical), signature)
