"""Bounded-parallelism helpers for asyncio."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_bounded(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T, int], Awaitable[R]],
) -> List[R]:
    """Run ``fn(item, index)`` over ``items`` with at most ``limit`` in flight.

    Workers claim the next index from a shared counter and write into a
    pre-sized list, so result order always matches input order regardless of
    completion order. The first exception raised by ``fn`` cancels the
    remaining workers and propagates.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")
    results: List[R] = [None] * len(items)  # type: ignore[list-item]
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(items):
            # Claim and advance with no await in between.
            idx = next_index
            next_index += 1
            results[idx] = await fn(items[idx], idx)

    workers = [asyncio.create_task(worker()) for _ in range(min(limit, len(items)))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise
    return results
