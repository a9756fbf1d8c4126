"""
YNAB API error classification for retry decisions.

This module defines the error hierarchy raised by the request executor
and the thin REST client:

- **ClassifiedError**: a completed HTTP exchange with a non-2xx status,
  tagged with an ``ErrorKind``
- **TransportError**: no HTTP response at all (DNS, reset, timeout)
- **RetriesExhaustedError**: the attempt ceiling was reached; wraps the
  last observed error
- **RequestCancelledError**: the caller cancelled during a retry wait
- **InvalidResponseError**: a 2xx body that does not decode into the
  expected payload

Error Classification Strategy:
    HTTP 401 → AUTH         → fail immediately
    HTTP 429 → RATE_LIMITED → retry after Retry-After (default 60s)
    HTTP 404 → NOT_FOUND    → fail immediately
    HTTP 400 → BAD_REQUEST  → fail immediately
    HTTP 5xx → SERVER_ERROR → retry with exponential backoff
    other    → UNKNOWN      → fail immediately
    Network  → TransportError → retry with exponential backoff
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    AUTH = "auth"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


_RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR})


def is_retryable(kind: ErrorKind) -> bool:
    """Return True for kinds the executor retries locally."""
    return kind in _RETRYABLE_KINDS


@dataclass(frozen=True)
class YnabApiError(Exception):
    """
    Base exception for all YNAB API errors.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code (0 when no response was received).
    """
    message: str
    status_code: int = 0

    def __str__(self) -> str:
        msg = f"[YNAB] {self.message}"
        if self.status_code > 0:
            msg += f" (HTTP {self.status_code})"
        return msg


@dataclass(frozen=True)
class ClassifiedError(YnabApiError):
    """
    Non-2xx response mapped onto a fixed ``ErrorKind``.

    Attributes:
        kind: Derived error kind.
        error_id: Service-supplied error identifier, if the body carried one.
        detail: Service-supplied detail string, if the body carried one.
        retry_after_s: Server-suggested wait for rate-limited responses.
    """
    kind: ErrorKind = ErrorKind.UNKNOWN
    error_id: str | None = None
    detail: str | None = None
    retry_after_s: int | None = None

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)

    def __str__(self) -> str:
        msg = super().__str__()
        if self.error_id:
            msg += f" [Error ID: {self.error_id}]"
        if self.detail:
            msg += f"\nDetails: {self.detail}"
        return msg


class TransportError(YnabApiError):
    """
    The request never produced an HTTP response.

    Raised for DNS failures, connection resets and client-side timeouts.
    Always retried by the executor up to the attempt ceiling.
    """
    pass


@dataclass(frozen=True)
class RetriesExhaustedError(YnabApiError):
    """
    Attempt ceiling reached without a successful response.

    Attributes:
        attempts: Number of HTTP attempts made.
        last_error: The last error observed before giving up.
    """
    attempts: int = 0
    last_error: YnabApiError | None = None

    @property
    def kind(self) -> ErrorKind | None:
        if isinstance(self.last_error, ClassifiedError):
            return self.last_error.kind
        return None

    def __str__(self) -> str:
        msg = f"[YNAB] {self.message}"
        if self.last_error is not None:
            msg += f": {self.last_error}"
        return msg


class RequestCancelledError(YnabApiError):
    """Caller cancelled the call while it was waiting between attempts."""
    pass


class InvalidResponseError(YnabApiError):
    """Successful response whose body does not match the expected envelope."""
    pass
