from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture storage/moderation latency and outcomes per integration.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def _p95(values: list[float]) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]


def snapshot(window_s: int = 300) -> dict[str, Any]:
    # Summarize recent request and integration health for the health endpoint.
    cutoff = time.time() - window_s
    requests = [sample for sample in _request_samples if sample.ts >= cutoff]
    grouped: dict[str, list[ExternalCallSample]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts >= cutoff:
            grouped[sample.integration].append(sample)
    return {
        "requests": {
            "count": len(requests),
            "errors_5xx": sum(1 for sample in requests if sample.status_code >= 500),
            "p95_ms": _p95([sample.latency_ms for sample in requests]),
        },
        "integrations": {
            name: {
                "count": len(samples),
                "failures": sum(1 for sample in samples if not sample.success),
                "p95_ms": _p95([sample.latency_ms for sample in samples]),
            }
            for name, samples in grouped.items()
        },
        "counters": dict(_counters),
    }


def reset() -> None:
    # Clear in-process samples between tests.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
