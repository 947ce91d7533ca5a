"""Async fan-out helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 4
MAX_CONCURRENCY = 8


async def map_with_concurrency(
    items: Sequence[T],
    concurrency: int | None,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """Run ``worker(item, index)`` over ``items`` with a bounded worker pool.

    Results are positional: ``result[i]`` belongs to ``items[i]``. The pool size
    is clamped to ``1..MAX_CONCURRENCY``.
    """
    size = max(1, min(concurrency or DEFAULT_CONCURRENCY, MAX_CONCURRENCY))
    results: list[R | None] = [None] * len(items)
    cursor = 0

    async def run_worker() -> None:
        nonlocal cursor
        while cursor < len(items):
            index = cursor
            cursor += 1
            results[index] = await worker(items[index], index)

    await asyncio.gather(*(run_worker() for _ in range(min(size, len(items)) or 1)))
    return results  # type: ignore[return-value]
