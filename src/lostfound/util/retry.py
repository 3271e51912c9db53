"""Bounded exponential backoff for calls to external AI services."""

from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, *, base_delay: float, max_delay: float) -> float:
    """Return the wait before retry ``attempt`` (0-based): ``base * 2**attempt`` capped."""

    return min(max_delay, base_delay * (2**attempt))


def call_with_retry(
    func: Callable[[], T],
    *,
    retry_on: Tuple[Type[BaseException], ...],
    max_retries: int,
    base_delay: float,
    max_delay: float,
    label: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Invoke ``func`` with up to ``max_retries`` retries on ``retry_on`` errors.

    The last error is re-raised once the retry budget is spent.
    """

    attempt = 0
    while True:
        try:
            return func()
        except retry_on as exc:
            if attempt >= max_retries:
                LOGGER.warning("%s failed after %d attempts: %s", label, attempt + 1, exc)
                raise
            wait_time = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
            LOGGER.info("%s failed (attempt %d/%d); retrying in %.2fs", label, attempt + 1, max_retries + 1, wait_time)
            sleep(wait_time)
            attempt += 1


__all__ = ["backoff_delay", "call_with_retry"]
