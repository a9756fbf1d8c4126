from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

_LATENCY_BUCKETS_MS = (25, 50, 100, 250, 500, 1000, 2000, 5000)


@dataclass
class ApiMetrics:
    """Request counters shared by every call made through one executor."""

    http_requests_total: dict[tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    http_retries_total: dict[tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    http_latency_ms: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_request(self, endpoint: str, status: str, latency_ms: float) -> None:
        with self._lock:
            self.http_requests_total[(endpoint, status)] += 1
            self.http_latency_ms[endpoint].append(latency_ms)

    def record_retry(self, endpoint: str, reason: str) -> None:
        with self._lock:
            self.http_retries_total[(endpoint, reason)] += 1

    def requests_for(self, endpoint: str) -> int:
        with self._lock:
            return sum(count for (name, _status), count in self.http_requests_total.items() if name == endpoint)


def summarize_api_health(metrics: ApiMetrics) -> dict[str, Any]:
    with metrics._lock:
        requests = dict(metrics.http_requests_total)
        retries = dict(metrics.http_retries_total)
        latencies = [value for values in metrics.http_latency_ms.values() for value in values]

    requests_by_status: dict[str, int] = {}
    for (_endpoint, status), count in requests.items():
        requests_by_status[status] = requests_by_status.get(status, 0) + count

    http_429_total = requests_by_status.get("429", 0)
    http_5xx_total = 0
    transport_errors_total = 0
    errors_total = 0
    for status, count in requests_by_status.items():
        try:
            status_code = int(status)
        except (TypeError, ValueError):
            transport_errors_total += count
            errors_total += count
            continue
        if 500 <= status_code <= 599:
            http_5xx_total += count
        if not 200 <= status_code < 300:
            errors_total += count

    if http_5xx_total > 0 or transport_errors_total > 0:
        api_health = "api_unstable"
    elif http_429_total > 0:
        api_health = "degraded"
    else:
        api_health = "ok"

    buckets: dict[str, int] = {}
    for bound in _LATENCY_BUCKETS_MS:
        buckets[str(bound)] = sum(1 for value in latencies if value <= bound)
    buckets["+inf"] = len(latencies)

    return {
        "api_health": api_health,
        "requests_total": sum(requests.values()),
        "retries_total": sum(retries.values()),
        "errors_total": errors_total,
        "requests_by_status": requests_by_status,
        "http_429_total": http_429_total,
        "http_5xx_total": http_5xx_total,
        "transport_errors_total": transport_errors_total,
        "latency_ms": {
            "count": len(latencies),
            "min": min(latencies) if latencies else None,
            "max": max(latencies) if latencies else None,
            "buckets": buckets,
        },
    }
