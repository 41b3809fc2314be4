from __future__ import annotations

import copy
import json
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from app.models.aggregation import (
    ACTIVE_STATUSES,
    AggregationJob,
    Country,
    JobLogEntry,
    JobStatus,
    MetricDataPoint,
    MetricDefinition,
)

DEFAULT_SEED_PATH = Path(__file__).resolve().parents[1] / "data" / "seed.json"


class InMemoryAggregationStore:
    """Process-local store for development runs and tests.

    Every read returns a copy, so callers always see a snapshot of storage and
    never hold a live reference to it.
    """

    def __init__(
        self,
        *,
        countries: list[Country] | None = None,
        metrics: list[MetricDefinition] | None = None,
    ):
        self._countries: dict[str, Country] = {c.id: c for c in countries or []}
        self._metrics: list[MetricDefinition] = list(metrics or [])
        self._jobs: dict[str, AggregationJob] = {}
        self._data: dict[tuple[str, str, int, int | None], MetricDataPoint] = {}

    @classmethod
    def from_seed_file(cls, path: str | Path | None = None) -> "InMemoryAggregationStore":
        seed_path = Path(path) if path else DEFAULT_SEED_PATH
        payload: dict[str, Any] = json.loads(seed_path.read_text(encoding="utf-8"))
        countries = [Country(**item) for item in payload.get("countries", [])]
        metrics = [MetricDefinition(**item) for item in payload.get("metrics", [])]
        return cls(countries=countries, metrics=metrics)

    # --- Reference data ---

    async def get_country(self, country_id: str) -> Country | None:
        country = self._countries.get(country_id)
        return copy.copy(country) if country else None

    async def load_metric_catalog(self) -> list[MetricDefinition]:
        ordered = sorted(self._metrics, key=lambda m: (m.category, m.code))
        return [copy.copy(m) for m in ordered]

    # --- Jobs ---

    def _require_job(self, job_id: str) -> AggregationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Job not found: {job_id}")
        return job

    async def create_job(self, country_id: str, year: int) -> AggregationJob:
        job = AggregationJob(id=str(uuid4()), country_id=country_id, year=year)
        self._jobs[job.id] = job
        return copy.deepcopy(job)

    async def get_job(self, job_id: str) -> AggregationJob | None:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def list_jobs(self, country_id: str, limit: int) -> list[AggregationJob]:
        jobs = [j for j in self._jobs.values() if j.country_id == country_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(j) for j in jobs[:limit]]

    async def find_active_job(self, country_id: str) -> AggregationJob | None:
        for job in self._jobs.values():
            if job.country_id == country_id and job.status in ACTIVE_STATUSES:
                return copy.deepcopy(job)
        return None

    async def append_job_log(self, job_id: str, entry: JobLogEntry) -> None:
        self._require_job(job_id).logs.append(copy.copy(entry))

    async def update_job_counters(
        self,
        job_id: str,
        *,
        total: int | None = None,
        completed: int | None = None,
        failed: int | None = None,
        current_batch_label: str | None = None,
    ) -> None:
        job = self._require_job(job_id)
        if total is not None:
            job.total_metrics = total
        if completed is not None:
            job.completed_metrics = completed
        if failed is not None:
            job.failed_metrics = failed
        if current_batch_label is not None:
            job.current_batch_label = current_batch_label

    async def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        expected: tuple[JobStatus, ...] | None = None,
    ) -> bool:
        job = self._require_job(job_id)
        if expected is not None and job.status not in expected:
            return False
        job.status = JobStatus(status)
        if started_at is not None and job.started_at is None:
            job.started_at = started_at
        if completed_at is not None and job.completed_at is None:
            job.completed_at = completed_at
        return True

    # --- Metric data ---

    async def find_existing_data_point(
        self, country_id: str, metric_id: str, year: int, quarter: int | None = None
    ) -> MetricDataPoint | None:
        point = self._data.get((country_id, metric_id, year, quarter))
        return copy.copy(point) if point else None

    async def upsert_data_point(self, point: MetricDataPoint) -> MetricDataPoint:
        existing = self._data.get(point.key)
        stored = replace(point, id=existing.id if existing else str(uuid4()))
        if existing and existing.created_by and not point.created_by:
            stored.created_by = existing.created_by
        self._data[stored.key] = stored
        return copy.copy(stored)

    def data_points(self) -> list[MetricDataPoint]:
        return [copy.copy(p) for p in self._data.values()]
