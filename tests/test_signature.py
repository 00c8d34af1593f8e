"""Tests for content digests and HMAC signatures."""

import base64
import hashlib
import hmac

import pytest

from apiauth.hmac.digest import (
    body_digest_header,
    compute_digest,
    decode_digest,
    digests_match,
    encode_digest,
)
from apiauth.hmac.signature import sign, signatures_equal, verify


class TestContentDigest:
    """Test Content-MD5 computation."""

    def test_digest_of_body(self):
        """Digest is the raw 16-byte MD5 of the body."""
        body = b'{"bolt":"on"}'
        digest = compute_digest(body)

        assert digest == hashlib.md5(body).digest()
        assert len(digest) == 16

    @pytest.mark.parametrize("body", [None, b""])
    def test_no_digest_for_empty_body(self, body):
        """Empty and absent bodies have no digest, not MD5 of the empty string."""
        assert compute_digest(body) is None
        assert encode_digest(compute_digest(body)) == ""
        assert body_digest_header(body) is None

    def test_header_value_is_base64(self):
        """Header value is the base64 of the raw digest."""
        body = b"hello"
        expected = base64.b64encode(hashlib.md5(body).digest()).decode()

        assert body_digest_header(body) == expected
        assert decode_digest(expected) == hashlib.md5(body).digest()

    def test_body_can_be_read_again(self):
        """Digesting does not consume the body."""
        body = bytearray(b"payload")
        compute_digest(bytes(body))
        assert bytes(body) == b"payload"

    def test_malformed_header_does_not_decode(self):
        """Non-base64 header values decode to None."""
        assert decode_digest("not base64!!") is None
        assert decode_digest("   ") is None
        assert decode_digest(None) is None

    def test_digests_match(self):
        """Declared digest must equal the body digest."""
        body = b"text body"
        header = body_digest_header(body)

        assert digests_match(header, body) is True
        assert digests_match(header, b"text bodY") is False
        assert digests_match(None, body) is False
        assert digests_match(header, None) is False


class TestSignature:
    """Test HMAC-SHA256 signing."""

    def test_sign_matches_reference_hmac(self):
        """Signature is base64 HMAC-SHA256 over the UTF-8 canonical string."""
        canonical = "GET\n\nWed, 04 May 1977 16:00:00 GMT\ndvader\nhttps://empire.gov/"
        expected = base64.b64encode(
            hmac.new(b"secret123", canonical.encode("utf-8"), hashlib.sha256).digest()
        ).decode()

        assert sign("secret123", canonical) == expected

    def test_bytes_and_text_secrets_agree(self):
        """Text secrets are UTF-8 encoded."""
        assert sign("sécret", "value") == sign("sécret".encode("utf-8"), "value")

    def test_sign_is_deterministic(self):
        """Same inputs produce the same signature."""
        assert sign("k", "msg") == sign("k", "msg")

    def test_round_trip(self):
        """A signature verifies with the secret and string it was made from."""
        canonical = "POST\nabc==\nWed, 04 May 1977 16:00:00 GMT\ndvader\nhttps://empire.gov/x"
        signature = sign("secret123", canonical)

        assert verify("secret123", canonical, signature) is True

    def test_wrong_secret_fails(self):
        """A different secret does not verify."""
        signature = sign("secret123", "canonical")
        assert verify("secret124", "canonical", signature) is False

    def test_tampered_canonical_fails(self):
        """A different canonical string does not verify."""
        signature = sign("secret123", "canonical")
        assert verify("secret123", "canonicaL", signature) is False

    def test_signatures_equal(self):
        """Constant-time comparison still compares exactly."""
        assert signatures_equal("abc", "abc") is True
        assert signatures_equal("abc", "abd") is False
        assert signatures_equal("abc", "abcd") is False
        assert signatures_equal("abc", "") is False
