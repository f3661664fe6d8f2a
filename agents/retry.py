from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 10.0


def backoff_delay(attempt: int) -> float:
    """Delay after failed attempt number `attempt` (1-based)."""
    return min(BASE_DELAY_SECONDS * 2 ** (attempt - 1), MAX_DELAY_SECONDS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    op_name: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run fn up to max_attempts times; only the last error propagates.

    Errors with ``retryable = False`` are raised immediately.
    """
    attempts = max(1, max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if not getattr(exc, "retryable", True) or attempt >= attempts:
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                "provider_call_retry",
                extra={"operation": op_name, "attempt": attempt, "max_attempts": attempts, "delay_s": delay, "error": repr(exc)},
            )
            await sleep(delay)
