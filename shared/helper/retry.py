"""Async retry combinator with exponential backoff."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    attempts: int,
    delay_ms: int,
    name: str,
    logger: logging.Logger,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` until it succeeds or ``attempts`` calls have failed.

    The delay before attempt n+1 is ``delay_ms * 2**(n-1)``. There is no sleep
    after the last attempt.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt.
        attempts: Maximum number of calls (at least 1).
        delay_ms: Base delay in milliseconds.
        name: Label used in log messages (e.g. "lmstudio/text-embedding-bge-m3").
        logger: Logger for retry warnings.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        T: The first successful result.

    Raises:
        Exception: The error of the last attempt.
    """
    attempts = max(1, attempts)

    for attempt in range(1, attempts):
        try:
            return await fn()
        except Exception as exc:
            backoff_ms = delay_ms * (2 ** (attempt - 1))
            logger.warning(
                "%s attempt %d/%d failed, retrying in %dms: %s",
                name, attempt, attempts, backoff_ms, exc,
            )
            await sleep(backoff_ms / 1000)

    # last attempt, its error propagates
    return await fn()
