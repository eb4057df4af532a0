"""Reusable retry policy with exponential backoff and jitter."""

from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

import requests

from .errors import OracleError, TransientOracleError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({408, 409, 429})


def is_retryable_status(status: Optional[int]) -> bool:
    return status is not None and (status in RETRYABLE_STATUSES or status >= 500)


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception as transient (worth retrying) or terminal."""
    if isinstance(exc, TransientOracleError):
        return True
    if isinstance(exc, OracleError):
        return is_retryable_status(exc.status)
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        return is_retryable_status(response.status_code if response is not None else None)
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    return isinstance(exc, (TimeoutError, ConnectionError, socket.gaierror))


@dataclass
class RetryPolicy:
    """Bounded retries around one call.

    ``max_attempts`` counts the first call, so ``max_attempts=3`` means up
    to two retries.  The delay before retry ``n`` is
    ``min(max_delay_ms, base_delay_ms * 2 ** (n - 1))`` plus up to
    ``jitter`` of that value.
    """

    max_attempts: int = 3
    base_delay_ms: int = 800
    max_delay_ms: int = 15_000
    jitter: float = 0.25
    classify: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before the ``retry_number``-th retry (1-based)."""
        base = min(self.max_delay_ms, self.base_delay_ms * (2 ** max(retry_number - 1, 0)))
        return (base + random.uniform(0, base * self.jitter)) / 1000.0

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        attempts = max(self.max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if attempt >= attempts or not self.classify(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Transient failure (attempt %d/%d): %s; retrying in %.2fs",
                    attempt, attempts, exc, delay,
                )
                self.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
