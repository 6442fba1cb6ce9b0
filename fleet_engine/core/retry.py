# fleet_engine/core/retry.py
"""Bounded exponential backoff for transient external failures."""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_retry_delay(attempt: int, base_seconds: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base..."""
    return base_seconds * (2 ** (attempt - 1))


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int,
    base_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    is_transient: Callable[[BaseException], bool] = lambda e: True,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """
    Call ``fn`` up to ``attempts`` times.

    Only exceptions in ``retry_on`` that ``is_transient`` accepts are retried;
    the last one is re-raised once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt >= attempts or not is_transient(e):
                logger.error(f"[retry] {label} failed after {attempt} attempt(s): {e}")
                raise

            delay = calculate_retry_delay(attempt, base_delay)
            logger.warning(
                f"[retry] {label} attempt {attempt}/{attempts} failed: {e} "
                f"(retrying in {delay:.1f}s)"
            )
            sleep(delay)

    raise AssertionError("unreachable")
