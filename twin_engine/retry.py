"""
Bounded exponential backoff for collaborator calls.
"""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from .exceptions import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(max_attempts: int, base_delay: float, max_delay: float):
    """Delays slept between attempts: base, 2*base, ... capped at max_delay."""
    delay = base_delay
    for _ in range(max_attempts - 1):
        yield delay
        delay = min(max_delay, delay * 2)


def call_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    retry_on: Tuple[Type[BaseException], ...] = (UpstreamError,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "call",
) -> T:
    """
    Call ``func`` until it succeeds or ``max_attempts`` is reached.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. After the last attempt the final exception is re-raised.

    Args:
        func: Zero-argument callable
        max_attempts: Total attempts including the first
        base_delay: Delay after the first failure (seconds)
        max_delay: Upper bound on any single delay
        retry_on: Exception types worth retrying
        sleep: Sleep function, replaceable in tests
        description: Label used in log lines

    Returns:
        Whatever ``func`` returns
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delays = backoff_delays(max_attempts, base_delay, max_delay)
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning("%s failed after %d attempt(s): %s", description, attempt, exc)
                raise
            delay = next(delays)
            logger.info("%s attempt %d failed (%s); retrying in %.2fs", description, attempt, exc, delay)
            sleep(delay)
