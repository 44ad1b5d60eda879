"""Asynchronous utilities for docsync.

Helpers for bounded concurrent execution. Work is processed in fixed-size
windows: each window is awaited completely before the next one starts, which
caps simultaneous load on downstream services without a global lock.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger("docsync")

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split *items* into consecutive windows of at most *size* elements."""
    if size < 1:
        raise ValueError(f"window size must be positive, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]


async def run_in_windows(
    items: Sequence[T],
    func: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R | BaseException]:
    """Apply *func* to every item, at most *concurrency* at a time.

    Items are processed in windows of ``concurrency`` elements; a window must
    finish entirely before the next starts. Exceptions raised by *func* are
    returned in place of the result rather than propagated, so one failing
    item never aborts the rest of the batch.

    Args:
        items: Items to process, in order
        func: Async function applied to each item
        concurrency: Window size

    Returns:
        Results (or exceptions) in the same order as *items*

    """
    results: list[R | BaseException] = []
    windows = chunked(items, concurrency)

    logger.debug(
        "Processing %d items in %d windows with concurrency %d",
        len(items),
        len(windows),
        concurrency,
    )

    for window in windows:
        window_results = await asyncio.gather(
            *(func(item) for item in window), return_exceptions=True
        )
        results.extend(window_results)

    return results
