"""Wire-level constants and formatting helpers for the ApiAuth scheme."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from urllib.parse import urlsplit, urlunsplit

DATE_HEADER = "Date"
CONTENT_MD5_HEADER = "Content-MD5"
CONTENT_TYPE_HEADER = "Content-Type"
AUTHORIZATION_HEADER = "Authorization"
WWW_AUTHENTICATE_HEADER = "WWW-Authenticate"

DEFAULT_USERNAME_HEADER = "X-ApiAuth-Username"
DEFAULT_SCHEME = "ApiAuth"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def format_http_date(value: datetime) -> str:
    """Render a datetime as an RFC-1123 HTTP-date in GMT."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def http_date_from_timestamp(timestamp: float) -> str:
    """Render a POSIX timestamp as an RFC-1123 HTTP-date."""
    # HTTP-dates carry whole seconds only
    return format_http_date(datetime.fromtimestamp(int(timestamp), tz=timezone.utc))


def parse_http_date(value: str | None) -> datetime | None:
    """
    Parse an HTTP-date header value.

    Returns an aware UTC datetime, or None when the value is missing or
    cannot be parsed.
    """
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def canonical_uri(url: str) -> str:
    """
    Normalise an absolute URI and lower-case it for signing.

    Default ports are dropped, an empty path becomes ``/`` and the fragment
    is discarded since it never reaches the server. The whole URI, query
    values included, is lower-cased so that signer and validator agree
    regardless of how either side spelled the host or path.

    Raises:
        ValueError: If the URI is not absolute or has an invalid port.
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"URI is not absolute: {url!r}")

    scheme = parts.scheme.lower()
    netloc = parts.netloc
    port = parts.port
    if port is not None and _DEFAULT_PORTS.get(scheme) == port:
        netloc = netloc[: netloc.rfind(":")]

    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, "")).lower()


def parse_authorization(value: str | None, scheme: str = DEFAULT_SCHEME) -> str | None:
    """
    Extract the credential from an ``Authorization: <scheme> <credential>`` header.

    Returns None when the header is missing, uses another scheme or carries
    no credential. The scheme token is matched case-sensitively.
    """
    if not value:
        return None
    token, _, credential = value.strip().partition(" ")
    if token != scheme:
        return None
    credential = credential.strip()
    return credential or None


def format_authorization(signature: str, scheme: str = DEFAULT_SCHEME) -> str:
    """Build the ``Authorization`` header value for a signature."""
    return f"{scheme} {signature}"
