from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from support_triage.errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
RETRY_DELAY_MS = 1000


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = MAX_RETRIES,
    initial_delay_ms: int = RETRY_DELAY_MS,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run `operation`, retrying failures with exponential backoff.

    The delay starts at `initial_delay_ms` and doubles after every failed
    attempt, so `max_retries=3` means at most 4 attempts. Once retries are
    exhausted the last error is re-raised as is. Errors flagged as not
    retryable (e.g. FatalExternalError) are re-raised on the first failure.
    """
    retries = max_retries
    delay_ms = initial_delay_ms
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if retries <= 0 or not is_retryable(exc):
                raise
            logger.warning(
                "Attempt %d failed (%s: %s), retrying in %d ms",
                attempt,
                type(exc).__name__,
                exc,
                delay_ms,
            )
            # asyncio.sleep only suspends this task; other runs keep going.
            await sleep(delay_ms / 1000)
            retries -= 1
            delay_ms *= 2
            attempt += 1
