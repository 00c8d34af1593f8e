"""Content-MD5 digest of request and response bodies."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac


def compute_digest(body: bytes | None) -> bytes | None:
    """
    Compute the raw 16-byte MD5 digest of a body.

    Absent and empty bodies have no digest; callers render that as an empty
    canonical field, never as the MD5 of the empty string.
    """
    if not body:
        return None
    return hashlib.md5(body).digest()


def encode_digest(digest: bytes | None) -> str:
    """Base64 wire form of a digest; empty string when there is none."""
    if not digest:
        return ""
    return base64.b64encode(digest).decode("ascii")


def body_digest_header(body: bytes | None) -> str | None:
    """``Content-MD5`` header value for a body, or None for an empty body."""
    digest = compute_digest(body)
    return encode_digest(digest) if digest else None


def decode_digest(value: str | None) -> bytes | None:
    """Decode a ``Content-MD5`` header value; None when missing or malformed."""
    if not value or not value.strip():
        return None
    try:
        return base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError):
        return None


def digests_match(declared: str | None, body: bytes | None) -> bool:
    """Check a declared ``Content-MD5`` header against the actual body bytes."""
    expected = compute_digest(body)
    provided = decode_digest(declared)
    if expected is None or provided is None:
        return False
    return hmac.compare_digest(expected, provided)
