"""Retry helper with exponential backoff for upstream calls."""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay to wait after failed attempt number `attempt` (1-based)."""
    return base_delay * (2 ** attempt)


def retry_with_backoff(
    fn: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "request",
) -> T:
    """
    Call fn() up to max_attempts times.

    Exceptions listed in retry_on trigger a wait of base_delay * 2**attempt
    before the next attempt; anything else, or anything in give_up_on,
    propagates immediately.
    The last retryable error is re-raised once attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_error: BaseException = RuntimeError(f"{label}: no attempt made")
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except give_up_on:
            raise
        except retry_on as exc:
            last_error = exc
            logger.warning(
                "%s failed (attempt %d/%d): %s", label, attempt, max_attempts, exc
            )
            if attempt < max_attempts:
                delay = backoff_delay(attempt, base_delay)
                logger.info("Waiting %.1fs before retrying %s", delay, label)
                sleep(delay)
    raise last_error
