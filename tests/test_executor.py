import threading
import time

import httpx
import pytest

from ynabcli.api.errors import (
    ClassifiedError,
    ErrorKind,
    RequestCancelledError,
    RetriesExhaustedError,
    TransportError,
)
from ynabcli.api.executor import RequestExecutor
from ynabcli.config import ApiConfig

BASE_URL = "https://api.ynab.test/v1"
OK_BODY = {"data": {"budgets": []}}


def build_executor(
    transport: httpx.BaseTransport,
    sleeps: list[float],
    *,
    max_retries: int = 3,
    **overrides: object,
) -> RequestExecutor:
    config = ApiConfig(base_url=BASE_URL, timeout_s=1, max_retries=max_retries, **overrides)
    return RequestExecutor(config, "test-token", transport=transport, sleep=sleeps.append)


def scripted(responses: list[httpx.Response], requests: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses.pop(0)

    return httpx.MockTransport(handler)


def test_server_error_exhausts_after_four_attempts() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            500, json={"error": {"id": "500", "name": "internal_server_error", "detail": "Server error"}}
        )

    executor = build_executor(httpx.MockTransport(handler), sleeps)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        executor.execute("GET", "/budgets")

    assert len(requests) == 4
    assert sleeps == [1.0, 2.0, 4.0]
    assert sum(sleeps) >= 7
    error = exc_info.value
    assert error.attempts == 4
    assert error.kind is ErrorKind.SERVER_ERROR
    assert isinstance(error.last_error, ClassifiedError)
    assert error.last_error.message == "internal_server_error"
    assert error.__cause__ is error.last_error


@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (401, ErrorKind.AUTH),
        (400, ErrorKind.BAD_REQUEST),
        (404, ErrorKind.NOT_FOUND),
        (418, ErrorKind.UNKNOWN),
    ],
)
def test_non_retryable_status_fails_on_first_attempt(status: int, kind: ErrorKind) -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json={"error": {"id": str(status), "name": "nope", "detail": "no"}})

    executor = build_executor(httpx.MockTransport(handler), sleeps)

    with pytest.raises(ClassifiedError) as exc_info:
        executor.execute("GET", "/budgets")

    assert len(requests) == 1
    assert sleeps == []
    assert exc_info.value.kind is kind
    assert exc_info.value.status_code == status


def test_rate_limit_honors_retry_after() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted(
        [
            httpx.Response(429, headers={"Retry-After": "5"}, json={"error": {"id": "429", "name": "too_many_requests"}}),
            httpx.Response(200, json=OK_BODY),
        ],
        requests,
    )
    executor = build_executor(transport, sleeps)

    body = executor.execute("GET", "/budgets")

    assert body == httpx.Response(200, json=OK_BODY).content
    assert len(requests) == 2
    assert sleeps == [5.0]
    assert 5 <= sum(sleeps) < 6


def test_rate_limit_without_retry_after_waits_default() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted([httpx.Response(429), httpx.Response(200, json=OK_BODY)], requests)
    executor = build_executor(transport, sleeps)

    executor.execute("GET", "/budgets")

    assert sleeps == [60.0]


def test_unparsable_retry_after_waits_default() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted(
        [httpx.Response(429, headers={"Retry-After": "soon"}), httpx.Response(200, json=OK_BODY)],
        requests,
    )
    executor = build_executor(transport, sleeps, rate_limit_default_wait_s=30)

    executor.execute("GET", "/budgets")

    assert sleeps == [30.0]


def test_rate_limit_does_not_advance_backoff_counter() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted(
        [
            httpx.Response(500),
            httpx.Response(429, headers={"Retry-After": "10"}),
            httpx.Response(503),
            httpx.Response(200, json=OK_BODY),
        ],
        requests,
    )
    executor = build_executor(transport, sleeps)

    executor.execute("GET", "/budgets")

    assert len(requests) == 4
    assert sleeps == [1.0, 10.0, 2.0]


def test_success_short_circuits_retries() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted([httpx.Response(500), httpx.Response(200, json={"data": {"ok": True}})], requests)
    executor = build_executor(transport, sleeps)

    body = executor.execute("GET", "/budgets")

    assert b'"ok"' in body
    assert len(requests) == 2
    assert sleeps == [1.0]
    assert executor.metrics.http_retries_total[("/budgets", "server_error")] == 1


def test_transport_errors_retry_then_exhaust() -> None:
    call_count = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        raise httpx.ConnectError("connection refused", request=request)

    executor = build_executor(httpx.MockTransport(handler), sleeps)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        executor.execute("GET", "/budgets")

    assert call_count == 4
    assert sleeps == [1.0, 2.0, 4.0]
    assert exc_info.value.kind is None
    assert isinstance(exc_info.value.last_error, TransportError)
    assert exc_info.value.last_error.status_code == 0
    assert executor.metrics.http_retries_total[("/budgets", "transport_error")] == 3


def test_timeout_then_success() -> None:
    call_count = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise httpx.ReadTimeout("timeout", request=request)
        return httpx.Response(200, json=OK_BODY)

    executor = build_executor(httpx.MockTransport(handler), sleeps)

    executor.execute("GET", "/budgets")

    assert call_count == 2
    assert sleeps == [1.0]
    assert executor.metrics.http_requests_total[("/budgets", "timeout")] == 1


def test_corrupt_body_is_retried_as_transport_error() -> None:
    call_count = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(
            200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not-gzip-at-all")
        )

    executor = build_executor(httpx.MockTransport(handler), sleeps)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        executor.execute("GET", "/budgets")

    assert call_count == 4
    assert sleeps == [1.0, 2.0, 4.0]
    assert isinstance(exc_info.value.last_error, TransportError)
    assert executor.metrics.http_requests_total[("/budgets", "decode_error")] == 4


def test_corrupt_body_then_success() -> None:
    call_count = 0
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            return httpx.Response(
                200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not-gzip-at-all")
            )
        return httpx.Response(200, json=OK_BODY)

    executor = build_executor(httpx.MockTransport(handler), sleeps)

    assert b'"budgets"' in executor.execute("GET", "/budgets")
    assert call_count == 2
    assert sleeps == [1.0]


def test_zero_retries_makes_single_attempt() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted([httpx.Response(502)], requests)
    executor = build_executor(transport, sleeps, max_retries=0)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        executor.execute("GET", "/budgets")

    assert len(requests) == 1
    assert sleeps == []
    assert exc_info.value.attempts == 1


def test_request_headers_and_body() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted(
        [httpx.Response(200, json=OK_BODY), httpx.Response(201, json={"data": {}})],
        requests,
    )
    executor = build_executor(transport, sleeps)

    executor.execute("get", "/budgets")
    executor.execute("POST", "/budgets/b1/transactions", b'{"transaction": {}}')

    get_request, post_request = requests
    assert str(get_request.url) == f"{BASE_URL}/budgets"
    assert get_request.method == "GET"
    assert get_request.headers["Authorization"] == "Bearer test-token"
    assert get_request.headers["User-Agent"].startswith("ynab-cli/")
    assert "Content-Type" not in get_request.headers
    assert post_request.headers["Content-Type"] == "application/json"
    assert post_request.content == b'{"transaction": {}}'


def test_retry_state_is_not_shared_between_calls() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted(
        [
            httpx.Response(500),
            httpx.Response(200, json=OK_BODY),
            httpx.Response(500),
            httpx.Response(200, json=OK_BODY),
        ],
        requests,
    )
    executor = build_executor(transport, sleeps)

    executor.execute("GET", "/budgets")
    executor.execute("GET", "/budgets")

    assert sleeps == [1.0, 1.0]


def test_concurrent_calls_keep_independent_schedules() -> None:
    sleeps: list[float] = []
    counts: dict[str, int] = {}
    lock = threading.Lock()

    def handler(request: httpx.Request) -> httpx.Response:
        with lock:
            counts[request.url.path] = counts.get(request.url.path, 0) + 1
            seen = counts[request.url.path]
        if seen < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=OK_BODY)

    executor = build_executor(httpx.MockTransport(handler), sleeps)
    errors: list[Exception] = []

    def run(path: str) -> None:
        try:
            executor.execute("GET", path)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(f"/budgets/{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(sleeps) == [1.0] * 4 + [2.0] * 4


def test_cancel_during_wait_aborts() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted([httpx.Response(500), httpx.Response(200, json=OK_BODY)], requests)
    executor = build_executor(transport, sleeps)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RequestCancelledError):
        executor.execute("GET", "/budgets", cancel=cancel)

    assert len(requests) == 1
    assert sleeps == []


def test_unset_cancel_event_waits_and_retries() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted([httpx.Response(500), httpx.Response(200, json=OK_BODY)], requests)
    executor = build_executor(transport, sleeps, backoff_base_s=0.01)

    executor.execute("GET", "/budgets", cancel=threading.Event())

    assert len(requests) == 2


def test_total_wait_cap_stops_retrying() -> None:
    requests: list[httpx.Request] = []
    sleeps: list[float] = []
    transport = scripted(
        [httpx.Response(429, headers={"Retry-After": "120"}), httpx.Response(200, json=OK_BODY)],
        requests,
    )
    executor = build_executor(transport, sleeps, max_total_wait_s=10)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        executor.execute("GET", "/budgets")

    assert len(requests) == 1
    assert sleeps == []
    assert exc_info.value.kind is ErrorKind.RATE_LIMITED


def test_default_sleep_blocks_between_attempts() -> None:
    call_count = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal call_count
        call_count += 1
        return httpx.Response(500)

    config = ApiConfig(base_url=BASE_URL, timeout_s=1, max_retries=3, backoff_base_s=0.01)
    executor = RequestExecutor(config, "test-token", transport=httpx.MockTransport(handler))

    start = time.monotonic()
    with pytest.raises(RetriesExhaustedError):
        executor.execute("GET", "/budgets")
    elapsed = time.monotonic() - start

    assert call_count == 4
    assert elapsed >= 0.07


def test_empty_token_rejected() -> None:
    with pytest.raises(ValueError):
        RequestExecutor(ApiConfig(), "")
