from __future__ import annotations

from datetime import datetime
from typing import Protocol

from app.config import settings
from app.errors import DataPointRejectedError
from app.models.aggregation import (
    AggregationJob,
    Country,
    JobLogEntry,
    JobStatus,
    MetricDataPoint,
    MetricDefinition,
)


class AggregationStore(Protocol):
    """Persistence gateway used by the aggregation engine and the job control surface."""

    async def get_country(self, country_id: str) -> Country | None: ...
    async def load_metric_catalog(self) -> list[MetricDefinition]: ...

    async def create_job(self, country_id: str, year: int) -> AggregationJob: ...
    async def get_job(self, job_id: str) -> AggregationJob | None: ...
    async def list_jobs(self, country_id: str, limit: int) -> list[AggregationJob]: ...
    async def find_active_job(self, country_id: str) -> AggregationJob | None: ...
    async def append_job_log(self, job_id: str, entry: JobLogEntry) -> None: ...
    async def update_job_counters(
        self,
        job_id: str,
        *,
        total: int | None = None,
        completed: int | None = None,
        failed: int | None = None,
        current_batch_label: str | None = None,
    ) -> None: ...
    async def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        expected: tuple[JobStatus, ...] | None = None,
    ) -> bool:
        """Move the job to `status`; returns False when its current status is not in `expected`."""
        ...

    async def find_existing_data_point(
        self, country_id: str, metric_id: str, year: int, quarter: int | None = None
    ) -> MetricDataPoint | None: ...
    async def upsert_data_point(self, point: MetricDataPoint) -> MetricDataPoint: ...


def validate_data_point(metric: MetricDefinition, point: MetricDataPoint) -> MetricDataPoint:
    """Bounds checks applied right before a data point is written."""
    if point.value_numeric is not None and point.value_text is not None:
        raise DataPointRejectedError("Data point cannot carry both a numeric and a text value")

    if point.confidence_score is not None and not 1 <= point.confidence_score <= 10:
        point.confidence_score = None

    value = point.value_numeric
    if value is not None:
        if metric.min_value is not None and value < metric.min_value:
            raise DataPointRejectedError(f"Value {value} below minimum {metric.min_value}")
        if metric.max_value is not None and value > metric.max_value:
            raise DataPointRejectedError(f"Value {value} above maximum {metric.max_value}")
    return point


_store: AggregationStore | None = None


def get_store() -> AggregationStore:
    global _store
    if _store is None:
        backend = settings.persistence_backend.lower().strip()
        if backend == "postgres":
            from app.services.database import PostgresAggregationStore

            _store = PostgresAggregationStore(settings.database_url)
        elif backend == "memory":
            from app.services.memory_store import InMemoryAggregationStore

            _store = InMemoryAggregationStore.from_seed_file(settings.seed_file or None)
        else:
            raise ValueError(f"Unsupported PERSISTENCE_BACKEND: {settings.persistence_backend}")
    return _store
