"""
apiauth: HMAC request authentication for HTTP APIs.

Clients sign a canonical representation of each request with a per-user
secret; servers rebuild the same representation, verify the signature
within a validity window and reject replays of signatures already seen.
"""

__version__ = "1.0.0"
