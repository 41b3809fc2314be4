from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class Batch(Generic[T]):
    number: int
    total: int
    items: list[T] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"Batch {self.number}/{self.total}"


def partition(items: Sequence[T], batch_size: int) -> list[Batch[T]]:
    """Split items into consecutive fixed-size batches, keeping their order."""
    size = max(int(batch_size), 1)
    total = math.ceil(len(items) / size)
    return [
        Batch(number=index + 1, total=total, items=list(items[start : start + size]))
        for index, start in enumerate(range(0, len(items), size))
    ]


async def run_batch(
    batch: Batch[T],
    worker: Callable[[T], Awaitable[Any]],
) -> list[Any]:
    """Run one worker per item concurrently and wait for every one to settle.

    Results come back in item order. A worker that raises does not cancel its
    siblings; its exception is returned in its slot instead.
    """
    return await asyncio.gather(
        *(worker(item) for item in batch.items),
        return_exceptions=True,
    )
