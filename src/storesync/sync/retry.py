"""Bounded retry for read-path operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from storesync.core.errors import SyncError
from storesync.core.log import logger

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(n-1)."""
    return min(base * 2 ** (attempt - 1), cap)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    what: str,
    attempts: int = 3,
    base: float = 1.0,
    cap: float = 5.0,
) -> T:
    """Await operation, retrying retryable SyncErrors.

    Only network-class failures are retried; anything else, and the
    last network failure once attempts run out, propagates unchanged.
    Never wrap a write (commit, push) in this: a write that failed
    half way must be re-issued by the caller, not replayed.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except SyncError as e:
            if not e.retryable or attempt >= attempts:
                raise
            delay = backoff_delay(attempt, base, cap)
            logger.warn(
                f"{what} failed, retrying",
                attempt=attempt,
                attempts=attempts,
                delay=delay,
                error=e.message,
            )
            await asyncio.sleep(delay)
            attempt += 1
