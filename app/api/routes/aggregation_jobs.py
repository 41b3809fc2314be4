from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_aggregation_store
from app.errors import (
    ActiveJobExistsError,
    EntityNotFoundError,
    JobNotFoundError,
    JobStateError,
)
from app.models.schemas import ErrorResponse, JobResponse, JobStatusResponse, StartJobRequest
from app.services import job_control
from app.services.store import AggregationStore

router = APIRouter(prefix="/api/aggregation-jobs", tags=["aggregation-jobs"])


@router.get("/{country_id}", response_model=list[JobResponse])
async def list_jobs(country_id: str, store: AggregationStore = Depends(get_aggregation_store)):
    """Most recent aggregation jobs for a country."""
    jobs = await job_control.list_jobs(store, country_id)
    return [JobResponse.from_job(job) for job in jobs]


@router.get("/{country_id}/active", response_model=JobResponse | None)
async def get_active_job(
    country_id: str, store: AggregationStore = Depends(get_aggregation_store)
):
    job = await job_control.get_active_job(store, country_id)
    return JobResponse.from_job(job) if job else None


@router.post("", response_model=JobResponse)
async def start_job(
    request: StartJobRequest, store: AggregationStore = Depends(get_aggregation_store)
):
    """Create a job and start it in the background. Poll /{job_id}/logs for progress."""
    try:
        job = await job_control.start_job(store, request.country_id, request.year)
    except EntityNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ActiveJobExistsError as exc:
        raise HTTPException(
            status_code=409,
            detail=ErrorResponse(
                error=str(exc), job=JobResponse.from_job(exc.job)
            ).model_dump(mode="json"),
        ) from exc
    return JobResponse.from_job(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, store: AggregationStore = Depends(get_aggregation_store)):
    try:
        job = await job_control.cancel_job(store, job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return JobResponse.from_job(job)


@router.get("/{job_id}/logs", response_model=JobStatusResponse)
async def get_job_logs(job_id: str, store: AggregationStore = Depends(get_aggregation_store)):
    try:
        snapshot = await job_control.get_job_status(store, job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    return JobStatusResponse(**snapshot)
