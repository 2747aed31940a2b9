"""Bounded concurrency for batches of independent GitHub mutations."""

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 5


async def bounded_gather(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> list[Union[R, BaseException]]:
    """Run fn over items with at most `concurrency` calls in flight.

    A failing call never cancels or blocks the others. Its exception is
    returned in place of the value, so the result list always has one slot
    per item, in input order.

    Args:
        items: Inputs, one call per item
        fn: Async function applied to each item
        concurrency: Maximum number of simultaneous calls (>= 1)

    Returns:
        Results (values or exceptions) in the same order as items
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    semaphore = asyncio.Semaphore(concurrency)

    async def run(item: T) -> R:
        async with semaphore:
            return await fn(item)

    return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
