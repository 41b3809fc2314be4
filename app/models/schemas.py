from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.aggregation import AggregationJob


# --- Requests ---


class StartJobRequest(BaseModel):
    country_id: str = Field(min_length=1)
    year: int = Field(ge=1900, le=2100)


# --- Responses ---


class JobLogEntryResponse(BaseModel):
    timestamp: str
    level: str
    message: str


class JobResponse(BaseModel):
    id: str
    country_id: str
    year: int
    status: str
    total_metrics: int
    completed_metrics: int
    failed_metrics: int
    current_batch_label: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    logs: list[JobLogEntryResponse]

    @classmethod
    def from_job(cls, job: AggregationJob) -> "JobResponse":
        return cls.model_validate(job.to_dict())


class ProgressResponse(BaseModel):
    completed: int
    failed: int
    total: int
    percent: int


class JobStatusResponse(BaseModel):
    status: str
    current_batch_label: str | None
    progress: ProgressResponse
    logs: list[JobLogEntryResponse]


class ErrorResponse(BaseModel):
    error: str
    job: JobResponse | None = None
