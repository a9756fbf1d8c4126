from __future__ import annotations

from collections.abc import Mapping

RETRY_AFTER_HEADER = "Retry-After"
DEFAULT_RATE_LIMIT_WAIT_S = 60.0


def parse_retry_after(headers: Mapping[str, str] | None) -> int | None:
    if not headers:
        return None
    raw = headers.get(RETRY_AFTER_HEADER)
    if raw is None:
        # httpx.Headers is case-insensitive, plain dicts are not
        raw = next(
            (value for key, value in headers.items() if key.lower() == RETRY_AFTER_HEADER.lower()),
            None,
        )
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return None
    if value < 0:
        return None
    return value


class RateLimitHandler:
    """
    Wait computation for 429 responses.

    The server's ``Retry-After`` value replaces the exponential delay for
    that one retry; the backoff counter is left untouched by the caller.
    """

    def __init__(self, default_wait_s: float = DEFAULT_RATE_LIMIT_WAIT_S) -> None:
        if default_wait_s < 0:
            raise ValueError("default_wait_s must be non-negative")
        self._default_wait_s = default_wait_s

    @property
    def default_wait_s(self) -> float:
        return self._default_wait_s

    def wait_for(self, headers: Mapping[str, str] | None) -> float:
        retry_after = parse_retry_after(headers)
        if retry_after is None:
            return self._default_wait_s
        return float(retry_after)
