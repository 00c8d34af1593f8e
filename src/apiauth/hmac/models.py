"""Data models for request authentication."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from multidict import CIMultiDict

from apiauth.hmac.headers import CONTENT_TYPE_HEADER


class RejectReason(str, Enum):
    """Why a request could not be authenticated."""

    MISSING_CREDENTIALS = "missing_credentials"
    STALE_OR_FUTURE_REQUEST = "stale_or_future_request"
    CONTENT_INTEGRITY_FAILURE = "content_integrity_failure"
    UNKNOWN_PRINCIPAL = "unknown_principal"
    SIGNATURE_MISMATCH = "signature_mismatch"
    REPLAY_DETECTED = "replay_detected"
    MALFORMED_CANONICAL_INPUT = "malformed_canonical_input"


class AuthOutcome(str, Enum):
    """Final state of a validation run."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    INFRASTRUCTURE_ERROR = "infrastructure_error"


@dataclass
class HttpRequest:
    """
    Transport-neutral view of an HTTP request.

    Headers are a case-insensitive multimap; the signer mutates them in place
    and the validator only reads them.
    """

    method: str
    url: str
    headers: CIMultiDict[str] = field(default_factory=CIMultiDict)
    body: bytes | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.headers, CIMultiDict):
            self.headers = CIMultiDict(self.headers)

    @classmethod
    def create(
        cls,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | str | None = None,
    ) -> "HttpRequest":
        """Build a request, encoding a text body as UTF-8."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(method=method, url=url, headers=CIMultiDict(headers or {}), body=body)

    def header(self, name: str) -> str | None:
        """First value of a header, or None."""
        return self.headers.get(name)

    @property
    def has_body(self) -> bool:
        return bool(self.body)

    @property
    def content_type(self) -> str | None:
        """Media type of the body, lower-cased and without parameters."""
        value = self.headers.get(CONTENT_TYPE_HEADER)
        if not value:
            return None
        media_type = value.split(";", 1)[0].strip().lower()
        return media_type or None


@dataclass
class AuthResult:
    """Outcome of authenticating one request."""

    outcome: AuthOutcome
    reason: RejectReason | None = None
    username: str | None = None
    time_delta: float | None = None
    message: str | None = None
    diagnostics: dict[str, Any] | None = None

    @property
    def is_accepted(self) -> bool:
        return self.outcome == AuthOutcome.ACCEPTED

    @classmethod
    def accepted(cls, username: str, time_delta: float | None = None) -> "AuthResult":
        return cls(outcome=AuthOutcome.ACCEPTED, username=username, time_delta=time_delta)

    @classmethod
    def rejected(
        cls,
        reason: RejectReason,
        message: str,
        username: str | None = None,
        time_delta: float | None = None,
        diagnostics: dict[str, Any] | None = None,
    ) -> "AuthResult":
        return cls(
            outcome=AuthOutcome.REJECTED,
            reason=reason,
            username=username,
            time_delta=time_delta,
            message=message,
            diagnostics=diagnostics,
        )

    @classmethod
    def infrastructure_error(
        cls,
        message: str,
        username: str | None = None,
    ) -> "AuthResult":
        return cls(
            outcome=AuthOutcome.INFRASTRUCTURE_ERROR,
            username=username,
            message=message,
        )

    def to_log_fields(self) -> dict[str, Any]:
        """Fields safe to attach to a log line."""
        fields: dict[str, Any] = {"outcome": self.outcome.value}
        if self.reason is not None:
            fields["reason"] = self.reason.value
        if self.username is not None:
            fields["username"] = self.username
        if self.time_delta is not None:
            fields["time_delta"] = round(self.time_delta, 3)
        if self.message:
            fields["detail"] = self.message
        return fields
