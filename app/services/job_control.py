"""Job control surface: create, launch, poll and cancel aggregation jobs."""
from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from app.config import settings
from app.errors import (
    ActiveJobExistsError,
    EntityNotFoundError,
    JobNotFoundError,
    JobStateError,
)
from app.models.aggregation import (
    ACTIVE_STATUSES,
    AggregationJob,
    JobLogEntry,
    JobStatus,
    LogLevel,
    utc_now,
)
from app.services import logger as log_service
from app.services.aggregation_engine import AggregationEngine
from app.services.progress import build_status_snapshot
from app.services.store import AggregationStore

# Strong references to running job tasks; the event loop only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


async def create_job(store: AggregationStore, country_id: str, year: int) -> AggregationJob:
    country = await store.get_country(country_id)
    if country is None:
        raise EntityNotFoundError(country_id)

    active = await store.find_active_job(country_id)
    if active is not None:
        raise ActiveJobExistsError(active)

    job = await store.create_job(country_id, year)
    log_service.log_event(
        event_type="aggregation_job_created",
        message="Aggregation job created",
        job_id=job.id,
        country_id=country_id,
        year=year,
    )
    return job


async def _run_in_background(store: AggregationStore, job_id: str) -> None:
    try:
        await AggregationEngine(store).run(job_id)
    except JobStateError as exc:
        # Cancelled before the engine got to it.
        logger.info(f"Aggregation job {job_id} not started: {exc}")
    except Exception:
        logger.exception(f"Aggregation job {job_id} failed")


def launch_job(store: AggregationStore, job_id: str) -> asyncio.Task:
    """Run the engine for a pending job as a background task on the current loop."""
    task = asyncio.create_task(_run_in_background(store, job_id), name=f"aggregation-{job_id}")
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def start_job(store: AggregationStore, country_id: str, year: int) -> AggregationJob:
    job = await create_job(store, country_id, year)
    launch_job(store, job.id)
    return job


async def get_job_status(store: AggregationStore, job_id: str) -> dict[str, Any]:
    job = await store.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return build_status_snapshot(job)


async def cancel_job(store: AggregationStore, job_id: str) -> AggregationJob:
    """Request cooperative cancellation; the engine stops at its next batch boundary."""
    job = await store.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    if job.status.is_terminal:
        raise JobStateError(job_id, job.status.value, "cancel")

    cancelled_now = await store.set_job_status(
        job_id, JobStatus.FAILED, completed_at=utc_now(), expected=ACTIVE_STATUSES
    )
    if not cancelled_now:
        current = await store.get_job(job_id)
        raise JobStateError(job_id, current.status.value if current else "missing", "cancel")
    await store.append_job_log(job_id, JobLogEntry.create(LogLevel.INFO, "Job cancelled by user"))
    log_service.log_job_step(job_id, LogLevel.INFO.value, "Job cancelled by user")

    cancelled = await store.get_job(job_id)
    if cancelled is None:
        raise JobNotFoundError(job_id)
    return cancelled


async def list_jobs(
    store: AggregationStore, country_id: str, limit: int | None = None
) -> list[AggregationJob]:
    return await store.list_jobs(country_id, limit or settings.aggregation_recent_jobs_limit)


async def get_active_job(store: AggregationStore, country_id: str) -> AggregationJob | None:
    return await store.find_active_job(country_id)
