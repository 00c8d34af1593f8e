"""Server-side validation of ApiAuth-signed requests."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from apiauth.common.logging import get_logger
from apiauth.common.metrics import record_auth_decision, update_replay_cache_entries
from apiauth.common.settings import Settings
from apiauth.common.tracing import span
from apiauth.hmac.canonical import CanonicalRequestBuilder, CanonicalRequestError
from apiauth.hmac.digest import body_digest_header, digests_match
from apiauth.hmac.headers import (
    AUTHORIZATION_HEADER,
    CONTENT_MD5_HEADER,
    DATE_HEADER,
    format_http_date,
    parse_authorization,
    parse_http_date,
)
from apiauth.hmac.models import AuthResult, HttpRequest, RejectReason
from apiauth.hmac.replay import ReplayCache, ReplayCacheFull
from apiauth.hmac.secrets import SecretProvider
from apiauth.hmac.signature import sign, signatures_equal

logger = get_logger(__name__)


class AuthenticationValidator:
    """
    Decides whether an incoming request carries a valid, fresh signature.

    Gates run in a fixed order and the first failure decides the rejection
    reason: credentials present, timestamp inside the validity window, body
    digest, secret lookup, signature match, replay check. The replay cache is
    written only once the signature has matched.
    """

    def __init__(
        self,
        secret_provider: SecretProvider,
        replay_cache: ReplayCache,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
        include_diagnostics: bool | None = None,
    ) -> None:
        """
        Initialize the validator.

        Args:
            secret_provider: Resolves usernames to secrets
            replay_cache: Signatures already accepted
            settings: Protocol configuration
            clock: Source of the current POSIX time
            include_diagnostics: Attach operator diagnostics to rejections
                (defaults to ``settings.debug_diagnostics``)
        """
        settings = settings or Settings()
        self._secret_provider = secret_provider
        self._replay_cache = replay_cache
        self._builder = CanonicalRequestBuilder.from_settings(settings)
        self._scheme = settings.authentication_scheme
        self._window = settings.validity_window_seconds
        self._clock = clock
        self._include_diagnostics = (
            settings.debug_diagnostics if include_diagnostics is None else include_diagnostics
        )

    @property
    def replay_cache(self) -> ReplayCache:
        return self._replay_cache

    async def validate(self, request: HttpRequest) -> AuthResult:
        """
        Authenticate one request.

        Never raises for authentication failures; infrastructure faults are
        reported as ``AuthOutcome.INFRASTRUCTURE_ERROR``.
        """
        start = time.perf_counter()
        with span("apiauth.validate", {"http.method": request.method}) as current_span:
            try:
                result = await self._run_gates(request)
            except Exception as exc:
                logger.exception("Unexpected error during authentication")
                result = AuthResult.infrastructure_error(
                    f"Internal error during authentication: {type(exc).__name__}",
                    username=request.header(self._builder.username_header),
                )
            current_span.set_attribute("apiauth.outcome", result.outcome.value)
            if result.reason is not None:
                current_span.set_attribute("apiauth.reason", result.reason.value)

        record_auth_decision(
            result.outcome.value,
            result.reason.value if result.reason else None,
            time.perf_counter() - start,
        )
        if result.is_accepted:
            logger.debug("Request authenticated", **result.to_log_fields())
        elif result.reason is not None:
            logger.warning("Request rejected", **result.to_log_fields())
        else:
            logger.error("Authentication unavailable", **result.to_log_fields())
        return result

    async def _run_gates(self, request: HttpRequest) -> AuthResult:
        now = self._clock()

        # Header check
        username = request.header(self._builder.username_header)
        signature = parse_authorization(request.header(AUTHORIZATION_HEADER), self._scheme)
        if not username or not signature:
            return self._reject(
                request,
                now,
                RejectReason.MISSING_CREDENTIALS,
                f"{self._builder.username_header} and {self._scheme} Authorization headers are required",
                username=username,
            )

        # Timestamp check
        request_date = parse_http_date(request.header(DATE_HEADER))
        if request_date is None:
            return self._reject(
                request,
                now,
                RejectReason.MALFORMED_CANONICAL_INPUT,
                "Date header missing or not an RFC-1123 HTTP-date",
                username=username,
            )
        time_delta = now - request_date.timestamp()
        if abs(time_delta) >= self._window:
            return self._reject(
                request,
                now,
                RejectReason.STALE_OR_FUTURE_REQUEST,
                f"Request date is {time_delta:+.0f}s from server time (window {self._window:.0f}s)",
                username=username,
                time_delta=time_delta,
            )

        # Digest check
        digest_error = self._check_digest(request)
        if digest_error is not None:
            return self._reject(
                request,
                now,
                RejectReason.CONTENT_INTEGRITY_FAILURE,
                digest_error,
                username=username,
                time_delta=time_delta,
            )

        # Secret lookup
        try:
            secret = await self._secret_provider.get_secret(username)
        except Exception as exc:
            logger.error("Secret lookup failed", username=username, error=str(exc))
            return AuthResult.infrastructure_error("Secret provider unavailable", username=username)
        if secret is None:
            return self._reject(
                request,
                now,
                RejectReason.UNKNOWN_PRINCIPAL,
                "No secret registered for user",
                username=username,
                time_delta=time_delta,
            )

        # Signature compare
        try:
            canonical = self._builder.build(request)
        except CanonicalRequestError as exc:
            return self._reject(
                request,
                now,
                exc.reason,
                exc.message,
                username=username,
                time_delta=time_delta,
            )
        expected = sign(secret, canonical)
        if not signatures_equal(expected, signature):
            return self._reject(
                request,
                now,
                RejectReason.SIGNATURE_MISMATCH,
                "Signature does not match request",
                username=username,
                time_delta=time_delta,
                canonical=canonical,
                expected_signature=expected,
            )

        # Replay check
        try:
            fresh = self._replay_cache.check_and_record(
                signature,
                request_date.timestamp() + self._window,
                self._clock(),
            )
        except ReplayCacheFull as exc:
            logger.error("Replay cache full", error=str(exc))
            return AuthResult.infrastructure_error("Replay cache full", username=username)
        except Exception as exc:
            logger.error("Replay cache unavailable", error=str(exc))
            return AuthResult.infrastructure_error("Replay cache unavailable", username=username)
        update_replay_cache_entries(len(self._replay_cache))
        if not fresh:
            return self._reject(
                request,
                now,
                RejectReason.REPLAY_DETECTED,
                "Signature already used within the validity window",
                username=username,
                time_delta=time_delta,
                canonical=canonical,
            )

        return AuthResult.accepted(username, time_delta=time_delta)

    def _check_digest(self, request: HttpRequest) -> str | None:
        declared = request.header(CONTENT_MD5_HEADER)
        has_declared = bool(declared and declared.strip())

        if not request.has_body:
            if has_declared:
                return "Content-MD5 header present but request has no body"
            return None

        if not self._builder.is_media_type_allowed(request.content_type):
            return f"Content type {request.content_type!r} is not accepted for signed bodies"
        if not has_declared:
            return "Content-MD5 header required when a body is present"
        if not digests_match(declared, request.body):
            return "Content-MD5 header does not match body"
        return None

    def _reject(
        self,
        request: HttpRequest,
        now: float,
        reason: RejectReason,
        message: str,
        username: str | None = None,
        time_delta: float | None = None,
        canonical: str | None = None,
        expected_signature: str | None = None,
    ) -> AuthResult:
        diagnostics = None
        if self._include_diagnostics:
            diagnostics = self._diagnostics(request, now, canonical, expected_signature)
        return AuthResult.rejected(
            reason,
            message,
            username=username,
            time_delta=time_delta,
            diagnostics=diagnostics,
        )

    def _diagnostics(
        self,
        request: HttpRequest,
        now: float,
        canonical: str | None,
        expected_signature: str | None,
    ) -> dict[str, Any]:
        """Operator-only detail; never includes the secret."""
        if canonical is None:
            try:
                canonical = self._builder.build(request)
            except CanonicalRequestError as exc:
                canonical = None
                request_valid = exc.message
            else:
                request_valid = "ok"
        else:
            request_valid = "ok"

        return {
            "url": request.url.lower(),
            "method": request.method,
            "request_date": request.header(DATE_HEADER),
            "server_date": format_http_date(datetime.fromtimestamp(now, tz=timezone.utc)),
            "username": request.header(self._builder.username_header),
            "signature": parse_authorization(request.header(AUTHORIZATION_HEADER), self._scheme),
            "server_signature": expected_signature,
            "canonical_request": canonical,
            "canonical_check": request_valid,
            "content_md5": request.header(CONTENT_MD5_HEADER),
            "server_content_md5": body_digest_header(request.body),
            "content_type": request.content_type,
            "content_length": len(request.body or b""),
        }
