"""Retry with exponential backoff, interruptible by a cancel event."""
from __future__ import annotations

import logging
import random
import threading
import time
from typing import Callable, Optional, TypeVar

from career_match.errors import PipelineCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, max_delay: float, jitter: bool = True) -> float:
    """Delay before retry number `attempt` (1-based): base * 2**(attempt-1), capped."""
    delay = min(base * (2 ** max(0, attempt - 1)), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
        delay = min(delay, max_delay)
    return max(0.0, delay)


def _default_is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", False))


def call_with_retry(
    fn: Callable[[int], T],
    *,
    retry_limit: int,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    jitter: bool = True,
    is_retryable: Callable[[BaseException], bool] = _default_is_retryable,
    cancel_event: Optional[threading.Event] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    first_attempt: int = 1,
) -> T:
    """
    Call fn(attempt) until it succeeds, up to 1 + retry_limit attempts.

    Only exceptions for which is_retryable() is true are retried; anything
    else, and the last failure, propagates. A set cancel_event stops further
    attempts and cuts the backoff sleep short with PipelineCancelled.

    first_attempt lets a caller resume a sequence whose earlier attempts ran
    elsewhere; the total stays 1 + retry_limit.
    """
    attempts = 1 + max(0, retry_limit)
    for attempt in range(max(1, first_attempt), attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled("cancelled before attempt %d" % attempt)
        try:
            return fn(attempt)
        except Exception as exc:
            if attempt == attempts or not is_retryable(exc):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            logger.debug("Attempt %d/%d failed (%s), retrying in %.1fs", attempt, attempts, exc, delay)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise PipelineCancelled("cancelled during backoff") from exc
            else:
                time.sleep(delay)
    raise AssertionError("unreachable")
