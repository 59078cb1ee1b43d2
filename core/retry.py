from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int) -> int:
    """Seconds to wait after the zero-indexed ``attempt`` failed."""
    return 2 ** attempt


async def retry(
    name: str,
    max_attempts: int,
    operation: Callable[[], Awaitable[T]],
) -> T:
    """Await ``operation()`` up to ``max_attempts`` times.

    Returns the first successful result.  Between attempts the delay is
    1, 2, 4, ... seconds (unjittered).  After the final failure the last
    exception is re-raised without a further delay.  ``max_attempts=1``
    means a single attempt.

    Knows nothing about HTTP; any awaitable unit of work can be retried.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    failures = 0
    while True:
        try:
            result = await operation()
        except Exception as exc:
            failures += 1
            if failures >= max_attempts:
                log.warning(
                    "Operation '%s' failed after %d attempt(s): %s",
                    name,
                    failures,
                    exc,
                )
                raise
            delay = backoff_delay(failures - 1)
            log.warning(
                "Operation '%s' failed (attempt %d/%d), retrying in %ds: %s",
                name,
                failures,
                max_attempts,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
            continue

        if failures:
            log.debug(
                "Operation '%s' succeeded on attempt %d/%d",
                name,
                failures + 1,
                max_attempts,
            )
        return result
