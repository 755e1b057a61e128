"""Retry helpers with exponential backoff."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def retry_call[T](
    fn: Callable[[], T],
    *,
    attempts: int,
    base_delay_s: float = 0.5,
    max_delay_s: float = 20.0,
    jitter_s: float = 0.25,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Retry a blocking function with exponential backoff.

    Args:
        fn: Callable to execute.
        attempts: Number of attempts before giving up.
        base_delay_s: Base delay in seconds.
        max_delay_s: Maximum delay between attempts.
        jitter_s: Random jitter added to delay.
        retry_on: Exception types to retry on.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Result of the callable.

    Raises:
        BaseException: The last exception if retries are exhausted.
    """
    last_exc: BaseException | None = None
    for i in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            last_exc = exc
            if i >= attempts:
                break
            delay = min(max_delay_s, base_delay_s * (2 ** (i - 1)))
            delay = delay + random.uniform(0, jitter_s)
            logger.info("Attempt %d/%d failed (%r); retrying in %.2fs", i, attempts, exc, delay)
            sleep(delay)
    assert last_exc is not None
    raise last_exc
