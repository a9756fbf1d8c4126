"""
Resilient request executor for the YNAB API.

Every typed API call funnels through ``RequestExecutor.execute``, the only
place HTTP attempts happen. One call runs the attempt loop:

    send → classify → stop or wait → send again

up to ``max_retries + 1`` attempts. Transport failures and 5xx responses
wait on the exponential ``BackoffPolicy``; 429 responses wait on the
``RateLimitHandler`` instead and leave the exponential counter untouched.
401, 400, 404 and unrecognised statuses are raised on first sight.

All retry bookkeeping lives in a ``RetryState`` local to one ``execute``
call, so a single executor can serve concurrent callers.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from ynabcli import __version__
from ynabcli.api.backoff import BackoffPolicy
from ynabcli.api.classifier import classify
from ynabcli.api.errors import (
    ClassifiedError,
    ErrorKind,
    RequestCancelledError,
    RetriesExhaustedError,
    TransportError,
    YnabApiError,
)
from ynabcli.api.ratelimit import RateLimitHandler
from ynabcli.config import ApiConfig
from ynabcli.obs.logging import log_event
from ynabcli.obs.metrics import ApiMetrics

USER_AGENT = f"ynab-cli/{__version__}"


@dataclass
class RetryState:
    """
    Loop state for one logical call.

    Attributes:
        attempt: Attempts started so far (never exceeds max_retries + 1).
        backoff_index: Exponential counter; advanced by transport and 5xx
            failures only.
        next_delay_s: Wait before the next attempt.
        waited_s: Total time spent waiting so far.
        last_error: Most recent failure, reported if the ceiling is reached.
    """
    attempt: int = 0
    backoff_index: int = 0
    next_delay_s: float = 0.0
    waited_s: float = 0.0
    last_error: YnabApiError | None = None


@dataclass(frozen=True)
class Attempt:
    method: str
    path: str
    body: bytes | None
    status_code: int | None
    response_headers: httpx.Headers | None
    response_body: bytes | None
    outcome: YnabApiError | None


class RequestExecutor:
    def __init__(
        self,
        config: ApiConfig,
        token: str,
        *,
        logger: logging.Logger | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
        backoff: BackoffPolicy | None = None,
        rate_limit: RateLimitHandler | None = None,
    ) -> None:
        if not token:
            raise ValueError("access token is required")
        self._config = config
        self._token = token
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep or time.sleep
        self._backoff = backoff or BackoffPolicy(base_s=config.backoff_base_s)
        self._rate_limit = rate_limit or RateLimitHandler(default_wait_s=config.rate_limit_default_wait_s)
        self._metrics = ApiMetrics()
        timeout = httpx.Timeout(config.timeout_s)
        self._client = httpx.Client(base_url=config.base_url, timeout=timeout, transport=transport)

    @property
    def metrics(self) -> ApiMetrics:
        return self._metrics

    @property
    def max_attempts(self) -> int:
        return self._config.max_retries + 1

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RequestExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def execute(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> bytes:
        """
        Run one logical API call and return the raw response body.

        Args:
            method: HTTP method.
            path: Path relative to the configured base URL, or an absolute URL.
            body: Serialized JSON request body, if any.
            cancel: Optional event; setting it aborts an inter-attempt wait.

        Raises:
            ClassifiedError: non-retryable response (AUTH, BAD_REQUEST,
                NOT_FOUND, UNKNOWN).
            RetriesExhaustedError: attempt ceiling reached; wraps the last error.
            RequestCancelledError: ``cancel`` was set while waiting.
        """
        method = method.upper()
        state = RetryState()

        while state.attempt < self.max_attempts:
            if state.attempt > 0:
                self._wait(state, path, cancel)
            state.attempt += 1

            attempt = self._send(method, path, body, state.attempt)
            outcome = attempt.outcome
            if outcome is None:
                return attempt.response_body or b""

            state.last_error = outcome

            if isinstance(outcome, TransportError):
                reason = "transport_error"
                state.backoff_index += 1
                state.next_delay_s = self._backoff.delay(state.backoff_index)
            elif isinstance(outcome, ClassifiedError) and outcome.kind is ErrorKind.RATE_LIMITED:
                reason = "rate_limited"
                state.next_delay_s = self._rate_limit.wait_for(attempt.response_headers)
            elif isinstance(outcome, ClassifiedError) and outcome.retryable:
                reason = "server_error"
                state.backoff_index += 1
                state.next_delay_s = self._backoff.delay(state.backoff_index)
            else:
                self._log_fail(path, outcome, state.attempt)
                raise outcome

            if state.attempt >= self.max_attempts:
                break

            cap = self._config.max_total_wait_s
            if cap is not None and state.waited_s + state.next_delay_s > cap:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "http_wait_cap_reached",
                    "Next retry would exceed the total wait cap; giving up",
                    path=path,
                    attempt=state.attempt,
                    waited_s=state.waited_s,
                    next_delay_s=state.next_delay_s,
                    max_total_wait_s=cap,
                )
                break

            self._metrics.record_retry(path, reason)
            log_event(
                self._logger,
                logging.INFO,
                "http_retry_scheduled",
                f"Retrying {method} {path} in {state.next_delay_s:g}s",
                path=path,
                attempt=state.attempt,
                reason=reason,
                delay_s=state.next_delay_s,
            )

        self._log_fail(path, state.last_error, state.attempt)
        exhausted = RetriesExhaustedError(
            f"request failed after {state.attempt} attempts",
            attempts=state.attempt,
            last_error=state.last_error,
        )
        raise exhausted from state.last_error

    def _wait(self, state: RetryState, path: str, cancel: threading.Event | None) -> None:
        delay = state.next_delay_s
        if cancel is None:
            self._sleep(delay)
        elif cancel.wait(delay):
            log_event(
                self._logger,
                logging.WARNING,
                "http_cancelled",
                "Call cancelled while waiting to retry",
                path=path,
                attempt=state.attempt,
            )
            raise RequestCancelledError("request cancelled while waiting to retry")
        state.waited_s += delay

    def _send(self, method: str, path: str, body: bytes | None, attempt_no: int) -> Attempt:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if body is not None:
            headers["Content-Type"] = "application/json"

        start = time.monotonic()
        try:
            response = self._client.request(method, path, content=body, headers=headers)
        except httpx.RequestError as exc:
            latency_ms = (time.monotonic() - start) * 1000
            if isinstance(exc, httpx.TimeoutException):
                status_label = "timeout"
            elif isinstance(exc, httpx.DecodingError):
                status_label = "decode_error"
            else:
                status_label = "connection_error"
            self._metrics.record_request(path, status_label, latency_ms)
            log_event(
                self._logger,
                logging.WARNING,
                "api_transport_error",
                f"{method} {path} failed without a readable response",
                path=path,
                status=None,
                attempt=attempt_no,
                error_type=type(exc).__name__,
                latency_ms=round(latency_ms, 2),
            )
            message = "Request timed out" if status_label == "timeout" else f"Request failed: {exc}"
            return Attempt(method, path, body, None, None, None, TransportError(message))

        latency_ms = (time.monotonic() - start) * 1000
        self._metrics.record_request(path, str(response.status_code), latency_ms)
        log_event(
            self._logger,
            logging.DEBUG,
            "http_request",
            f"{method} {path}",
            path=path,
            status=response.status_code,
            attempt=attempt_no,
            latency_ms=round(latency_ms, 2),
        )

        outcome = classify(response.status_code, response.headers, response.content)
        if outcome is not None and outcome.kind is ErrorKind.RATE_LIMITED:
            log_event(
                self._logger,
                logging.WARNING,
                "api_rate_limited",
                "Rate limit response received; waiting for Retry-After",
                path=path,
                status=response.status_code,
                attempt=attempt_no,
                retry_after_s=outcome.retry_after_s,
            )
        elif outcome is not None and outcome.kind is ErrorKind.SERVER_ERROR:
            log_event(
                self._logger,
                logging.WARNING,
                "api_server_error",
                "Server error response received; backing off",
                path=path,
                status=response.status_code,
                attempt=attempt_no,
            )
        return Attempt(method, path, body, response.status_code, response.headers, response.content, outcome)

    def _log_fail(self, path: str, error: YnabApiError | None, attempts: int) -> None:
        log_event(
            self._logger,
            logging.ERROR,
            "http_fail",
            f"Request failed for {path}",
            path=path,
            attempts=attempts,
            error_type=type(error).__name__ if error is not None else None,
            status=error.status_code if error is not None else None,
        )
