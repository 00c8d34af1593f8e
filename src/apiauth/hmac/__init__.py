"""
ApiAuth request authentication
==============================
Canonical request signing with HMAC-SHA256, timestamp and content-digest
checks, and replay protection.
"""

from .canonical import CanonicalRequestBuilder, CanonicalRequestError, join_canonical
from .digest import body_digest_header, compute_digest, digests_match
from .models import AuthOutcome, AuthResult, HttpRequest, RejectReason
from .replay import (
    InMemoryReplayCache,
    ReplayCache,
    ReplayCacheFull,
    ReplayCacheSweeper,
    SqliteReplayCache,
    create_replay_cache,
)
from .secrets import (
    HashedPasswordSecretProvider,
    SecretProvider,
    StaticSecretProvider,
    derive_secret_from_password,
    provider_from_settings,
)
from .signature import sign, signatures_equal, verify
from .signer import RequestSigner, SigningError
from .validator import AuthenticationValidator

__all__ = [
    # Models
    "AuthOutcome",
    "AuthResult",
    "HttpRequest",
    "RejectReason",
    # Canonical form
    "CanonicalRequestBuilder",
    "CanonicalRequestError",
    "join_canonical",
    # Digest and signature
    "body_digest_header",
    "compute_digest",
    "digests_match",
    "sign",
    "signatures_equal",
    "verify",
    # Secrets
    "SecretProvider",
    "StaticSecretProvider",
    "HashedPasswordSecretProvider",
    "derive_secret_from_password",
    "provider_from_settings",
    # Replay protection
    "ReplayCache",
    "InMemoryReplayCache",
    "SqliteReplayCache",
    "ReplayCacheFull",
    "ReplayCacheSweeper",
    "create_replay_cache",
    # Client and server
    "RequestSigner",
    "SigningError",
    "AuthenticationValidator",
]
