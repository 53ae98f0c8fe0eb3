from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import requests.exceptions

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for calls that are safe to repeat."""

    max_attempts: int
    base_delay: float
    max_delay: float
    backoff_factor: float
    jitter: float  # fraction of the delay, applied in both directions
    retryable_exceptions: tuple[type[Exception], ...]


# Record submission never goes through here: AEAT may already have chained a
# record when the connection drops, so only the GET probe is repeated.
CONNECTIVITY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=10.0,
    backoff_factor=2.0,
    jitter=0.25,
    retryable_exceptions=(requests.exceptions.ConnectionError, requests.exceptions.Timeout),
)


def _calc_delay(attempt: int, policy: RetryPolicy) -> float:
    """Seconds to wait after a failure; *attempt* is 0 for the first failure."""
    base = min(policy.base_delay * policy.backoff_factor**attempt, policy.max_delay)
    spread = base * policy.jitter
    return max(0.0, base + random.uniform(-spread, spread))


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep_func: Callable[[float], object] | None = None,
) -> T:
    """Call *func* until it returns or *policy* gives up; the last error propagates."""
    sleep = sleep_func or time.sleep
    attempt = 0
    while True:
        try:
            return func()
        except policy.retryable_exceptions as exc:
            if attempt + 1 >= policy.max_attempts:
                raise
            wait = _calc_delay(attempt, policy)
            logger.warning(
                "%s on attempt %d of %d, retrying in %.1fs",
                type(exc).__name__,
                attempt + 1,
                policy.max_attempts,
                wait,
            )
            sleep(wait)
            attempt += 1
