from __future__ import annotations

import asyncio

import pytest

from app.services.batch_runner import Batch, partition, run_batch


def test_partition_twelve_items_by_five():
    batches = partition(list(range(12)), 5)

    assert [len(b.items) for b in batches] == [5, 5, 2]
    assert [b.label for b in batches] == ["Batch 1/3", "Batch 2/3", "Batch 3/3"]
    assert [item for b in batches for item in b.items] == list(range(12))


def test_partition_exact_multiple_and_empty():
    assert [b.label for b in partition(list("abcd"), 2)] == ["Batch 1/2", "Batch 2/2"]
    assert partition([], 5) == []


def test_partition_clamps_batch_size():
    assert len(partition([1, 2, 3], 0)) == 3


@pytest.mark.asyncio
async def test_run_batch_runs_workers_concurrently():
    active = 0
    peak = 0

    async def worker(item: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return item * 2

    results = await run_batch(Batch(number=1, total=1, items=[1, 2, 3, 4, 5]), worker)

    assert results == [2, 4, 6, 8, 10]
    assert peak == 5


@pytest.mark.asyncio
async def test_run_batch_waits_for_siblings_when_one_fails():
    finished: list[int] = []

    async def worker(item: int) -> int:
        if item == 1:
            raise RuntimeError("boom")
        await asyncio.sleep(0.01)
        finished.append(item)
        return item

    results = await run_batch(Batch(number=1, total=1, items=[1, 2, 3]), worker)

    assert isinstance(results[0], RuntimeError)
    assert results[1:] == [2, 3]
    assert sorted(finished) == [2, 3]
