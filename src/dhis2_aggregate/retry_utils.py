from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests

T = TypeVar("T")

# DHIS2 answers these while busy (imports queue up behind analytics runs)
TRANSIENT_HTTP_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryConfig:
    """Backoff for DHIS2 submissions.

    Delays grow deterministically (no jitter) and the last error is re-raised.
    Store reads never go through here.
    """

    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0
    multiplier: float = 2.0

    def delay_for(self, failed_attempt: int) -> float:
        return min(self.max_delay_s, self.base_delay_s * (self.multiplier ** (failed_attempt - 1)))


class RetryableHttpStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"retryable http status: {status_code}")
        self.status_code = status_code


def is_transient(exc: Exception) -> bool:
    """Busy server, timeout or dropped connection."""

    return isinstance(exc, (RetryableHttpStatus, requests.Timeout, requests.ConnectionError))


def retry_call(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig,
    should_retry: Callable[[Exception], bool] = is_transient,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> T:
    """Call `fn`, retrying failures accepted by `should_retry`.

    on_retry(attempt, exc, delay_s) is called before each sleep; attempt is
    1-based and names the attempt that failed.
    """

    if cfg.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= cfg.max_attempts or not should_retry(exc):
                raise

            delay_s = cfg.delay_for(attempt)
            if on_retry is not None:
                on_retry(attempt, exc, delay_s)
            time.sleep(delay_s)
