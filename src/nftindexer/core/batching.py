"""Helpers for splitting work into bounded batches and pacing it over time"""
import asyncio
import math
from typing import Sequence, List, TypeVar, Callable, Awaitable

T = TypeVar("T")
R = TypeVar("R")


def split_into_batches(items: Sequence[T], max_batch_size: int) -> List[List[T]]:
    """
    Split `items` into consecutive batches of at most `max_batch_size` items. All
    batches but the last will be full. The order of the items is kept.

    :param items: Items to split
    :param max_batch_size: Maximum number of items in a batch. Must be at least 1.
    """
    if max_batch_size < 1:
        raise ValueError("max_batch_size must be at least 1")
    return [
        list(items[offset : offset + max_batch_size])  # NOQA: E203
        for offset in range(0, len(items), max_batch_size)
    ]


def stagger_delay(position: int, per_second: int) -> float:
    """
    Number of seconds to wait before starting the item at `position` in a batch of
    `per_second` items so that the batch is spread evenly across one second.
    """
    return math.ceil(1000 * (position + 1) / per_second) / 1000


async def gather_rate_limited(
    items: Sequence[T], per_second: int, func: Callable[[T], Awaitable[R]]
) -> List[R]:
    """
    Call `func` for every item with no more than `per_second` calls started each second.

    Items are processed in batches of `per_second`. The starts within a batch are
    staggered across one second and run concurrently. The next batch begins only after
    every call in the current batch has finished. When a call fails, the calls still
    running in its batch are cancelled and the error is raised.

    :returns: The results of `func` in the same order as `items`
    """
    results: List[R] = []
    for batch in split_into_batches(items, per_second):
        tasks = [
            asyncio.create_task(_delayed_call(stagger_delay(position, per_second), func, item))
            for position, item in enumerate(batch)
        ]
        try:
            results.extend(await asyncio.gather(*tasks))
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
    return results


async def _delayed_call(delay: float, func: Callable[[T], Awaitable[R]], item: T) -> R:
    await asyncio.sleep(delay)
    return await func(item)
