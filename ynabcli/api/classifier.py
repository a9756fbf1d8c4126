from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import httpx

from ynabcli.api.errors import ClassifiedError, ErrorKind
from ynabcli.api.ratelimit import parse_retry_after

_KIND_BY_STATUS = {
    401: ErrorKind.AUTH,
    429: ErrorKind.RATE_LIMITED,
    404: ErrorKind.NOT_FOUND,
    400: ErrorKind.BAD_REQUEST,
}


def classify_status(status_code: int) -> ErrorKind | None:
    """Map a status code to an error kind; ``None`` means success."""
    if 200 <= status_code < 300:
        return None
    kind = _KIND_BY_STATUS.get(status_code)
    if kind is not None:
        return kind
    if 500 <= status_code < 600:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def parse_error_envelope(body: bytes | str | None) -> tuple[str, str | None, str | None] | None:
    """
    Extract ``(name, id, detail)`` from an ``{"error": {...}}`` body.

    Returns None unless the body is a JSON object whose ``error`` object
    carries a non-empty string ``name``.
    """
    if not body:
        return None
    try:
        payload: Any = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    name = error.get("name")
    if not isinstance(name, str) or not name:
        return None
    error_id = error.get("id")
    detail = error.get("detail")
    return (
        name,
        str(error_id) if error_id not in (None, "") else None,
        str(detail) if detail not in (None, "") else None,
    )


def fallback_message(status_code: int) -> str:
    reason = httpx.codes.get_reason_phrase(status_code)
    if reason:
        return f"HTTP request failed: {status_code} {reason}"
    return f"HTTP request failed: {status_code}"


def classify(
    status_code: int,
    headers: Mapping[str, str] | None,
    body: bytes | str | None,
) -> ClassifiedError | None:
    """
    Classify a completed HTTP exchange.

    Returns None for a 2xx response, otherwise a ``ClassifiedError``. The
    result depends only on the arguments.
    """
    kind = classify_status(status_code)
    if kind is None:
        return None

    retry_after_s = parse_retry_after(headers) if kind is ErrorKind.RATE_LIMITED else None
    envelope = parse_error_envelope(body)
    if envelope is None:
        return ClassifiedError(
            message=fallback_message(status_code),
            status_code=status_code,
            kind=kind,
            retry_after_s=retry_after_s,
        )

    name, error_id, detail = envelope
    return ClassifiedError(
        message=name,
        status_code=status_code,
        kind=kind,
        error_id=error_id,
        detail=detail,
        retry_after_s=retry_after_s,
    )
