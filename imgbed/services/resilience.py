from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

from imgbed.core.config import get_settings
from imgbed.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, OSError, httpx.TimeoutException, httpx.NetworkError)


def _default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures by default.
    if isinstance(exc, TransientException):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def default_retry_policy() -> RetryPolicy:
    # Storage writes are not retried; only idempotent reads opt into extra attempts.
    return RetryPolicy(timeout_ms=get_settings().ext_call_timeout_ms, max_attempts=1, backoff_ms=200)


async def call_with_timeout(func: Callable[[], Awaitable[Any]], *, timeout_ms: int) -> Any:
    # asyncio.TimeoutError is TimeoutError on current interpreters.
    return await asyncio.wait_for(func(), timeout=timeout_ms / 1000.0)


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    # Retry helper with jittered backoff for transient failures only.
    policy = policy or default_retry_policy()
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await call_with_timeout(func, timeout_ms=policy.timeout_ms)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            increment_counter("external_retries_total")
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            logger.info("external_call_retry attempt=%s sleep_s=%.3f", attempt, sleep_s)
            await asyncio.sleep(sleep_s)
            attempt += 1
