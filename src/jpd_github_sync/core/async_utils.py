"""Async utilities for fanning blocking HTTP calls out to a thread pool."""

import asyncio
import logging
from typing import Any, Callable, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync_limited(
    semaphore: asyncio.Semaphore,
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a blocking function in a worker thread once *semaphore* has a slot.

    Args:
        semaphore: Bound shared by the calls of one batch
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    async with semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def _gather(
    calls: Sequence[Callable[[], T]], max_parallel: int
) -> list[T]:
    semaphore = asyncio.Semaphore(max_parallel)
    return list(
        await asyncio.gather(
            *(run_sync_limited(semaphore, call) for call in calls)
        )
    )


def gather_limited(
    calls: Sequence[Callable[[], T]], max_parallel: int = 5
) -> list[T]:
    """Run zero-argument blocking *calls* concurrently, at most
    *max_parallel* at a time.

    The semaphore is created per call, inside the event loop that uses
    it.  Returns results in input order; the first exception propagates.

    Args:
        calls: Blocking callables, typically wrapped API requests.
        max_parallel: Concurrency bound.

    Returns:
        List of results in the same order as *calls*.
    """
    if not calls:
        return []
    logger.debug(
        "Running %d calls with max_parallel=%d", len(calls), max_parallel
    )
    return asyncio.run(_gather(calls, max_parallel))
