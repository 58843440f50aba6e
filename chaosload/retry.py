"""
Retry helpers with bounded exponential backoff.

Provides automatic retry for transient API errors:
- 429 Throttling
- 5xx Server Errors
- Connection/Timeout Errors (httpx transport errors)

Used for condition create/delete submission and for cleanup listing.
"""

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from chaosload.exceptions import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2**attempt) + random.uniform(0, base_delay), max_delay)


def retry_call(
    func: Callable[[], T],
    *,
    max_attempts: int = 5,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    retriable: Callable[[BaseException], bool] = is_transient,
    should_continue: Optional[Callable[[], bool]] = None,
    description: str = "call",
) -> T:
    """
    Call func, retrying retriable errors with exponential backoff.

    Args:
        func: Zero-argument callable to invoke.
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay cap in seconds.
        retriable: Predicate deciding whether an error is worth retrying.
        should_continue: Checked before each retry; returning False stops
            retrying and re-raises the last error.
        description: Used in log lines.

    Returns:
        The return value of the first successful call.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(max_attempts):
        try:
            return func()
        except Exception as e:
            if not retriable(e):
                raise
            if attempt >= max_attempts - 1:
                raise
            if should_continue is not None and not should_continue():
                raise

            delay = _backoff(attempt, base_delay, max_delay)
            logger.debug(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                description,
                attempt + 1,
                max_attempts,
                delay,
                e,
            )
            time.sleep(delay)

    raise AssertionError("unreachable")

