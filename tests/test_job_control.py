from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from app.errors import (
    ActiveJobExistsError,
    EntityNotFoundError,
    JobNotFoundError,
    JobStateError,
)
from app.models.aggregation import JobStatus, MetricSearchResult, utc_now
from app.services import job_control


@pytest.mark.asyncio
async def test_create_job_starts_pending(store):
    job = await job_control.create_job(store, "US", 2024)

    assert job.status == JobStatus.PENDING
    assert job.total_metrics == 0
    assert job.logs == []
    assert (await store.find_active_job("US")).id == job.id


@pytest.mark.asyncio
async def test_create_job_unknown_country(store):
    with pytest.raises(EntityNotFoundError):
        await job_control.create_job(store, "ZZ", 2024)


@pytest.mark.asyncio
async def test_only_one_active_job_per_country(store):
    first = await job_control.create_job(store, "US", 2024)

    with pytest.raises(ActiveJobExistsError) as exc_info:
        await job_control.create_job(store, "US", 2023)
    assert exc_info.value.job.id == first.id

    await store.set_job_status(first.id, JobStatus.COMPLETED, completed_at=utc_now())
    second = await job_control.create_job(store, "US", 2023)
    assert second.id != first.id


@pytest.mark.asyncio
async def test_start_job_launches_engine_in_background(store):
    with patch("app.services.job_control.launch_job") as launch:
        job = await job_control.start_job(store, "US", 2024)

    launch.assert_called_once_with(store, job.id)


@pytest.mark.asyncio
async def test_launched_job_runs_to_completion(store):
    async def fake_search(country, metric, year):
        return MetricSearchResult.not_found()

    with patch("app.services.metric_search.search_for_metric", fake_search):
        job = await job_control.create_job(store, "US", 2024)
        await job_control.launch_job(store, job.id)

    finished = await store.get_job(job.id)
    assert finished.status == JobStatus.COMPLETED
    assert finished.completed_metrics == 12


@pytest.mark.asyncio
async def test_launch_after_cancel_leaves_job_cancelled(store):
    job = await job_control.create_job(store, "US", 2024)
    await job_control.cancel_job(store, job.id)

    await job_control.launch_job(store, job.id)

    assert (await store.get_job(job.id)).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_cancel_marks_job_failed_and_logs(store):
    job = await job_control.create_job(store, "US", 2024)

    cancelled = await job_control.cancel_job(store, job.id)

    assert cancelled.status == JobStatus.FAILED
    assert cancelled.completed_at is not None
    assert cancelled.logs[-1].message == "Job cancelled by user"
    assert await store.find_active_job("US") is None


@pytest.mark.asyncio
async def test_cancel_terminal_job_is_rejected(store):
    job = await job_control.create_job(store, "US", 2024)
    await store.set_job_status(job.id, JobStatus.COMPLETED, completed_at=utc_now())

    with pytest.raises(JobStateError):
        await job_control.cancel_job(store, job.id)


@pytest.mark.asyncio
async def test_cancel_unknown_job(store):
    with pytest.raises(JobNotFoundError):
        await job_control.cancel_job(store, "nope")


@pytest.mark.asyncio
async def test_get_job_status(store):
    job = await job_control.create_job(store, "US", 2024)
    await store.update_job_counters(job.id, total=12, completed=6, current_batch_label="Batch 2/3")

    snapshot = await job_control.get_job_status(store, job.id)

    assert snapshot["status"] == "pending"
    assert snapshot["current_batch_label"] == "Batch 2/3"
    assert snapshot["progress"]["percent"] == 50

    with pytest.raises(JobNotFoundError):
        await job_control.get_job_status(store, "nope")


@pytest.mark.asyncio
async def test_list_jobs_newest_first_and_limited(store):
    ids = []
    for offset in range(4):
        job = await store.create_job("US", 2020 + offset)
        store._jobs[job.id].created_at = utc_now() + timedelta(minutes=offset)
        ids.append(job.id)

    listed = await job_control.list_jobs(store, "US", limit=3)

    assert [j.id for j in listed] == list(reversed(ids))[:3]
    assert await job_control.list_jobs(store, "FR") == []


@pytest.mark.asyncio
async def test_get_active_job(store):
    assert await job_control.get_active_job(store, "US") is None
    job = await job_control.create_job(store, "US", 2024)
    assert (await job_control.get_active_job(store, "US")).id == job.id
