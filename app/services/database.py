"""PostgreSQL persistence gateway using asyncpg."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

import asyncpg

from app.config import settings
from app.errors import PersistenceError
from app.models.aggregation import (
    ACTIVE_STATUSES,
    AggregationJob,
    Country,
    JobLogEntry,
    JobStatus,
    MetricDataPoint,
    MetricDefinition,
    SourceType,
)
from app.services import logger as log_service

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"

_JOB_COLUMNS = """
    id, country_id, year, status, total_metrics, completed_metrics, failed_metrics,
    current_batch_label, logs, started_at, completed_at, created_at
"""

_DATA_COLUMNS = """
    id, country_id, metric_id, year, quarter, value_numeric, value_text, source_type,
    source_url, source_name, confidence_score, ai_reasoning, created_by
"""


def _coerce_json_list(value: Any) -> list[Any]:
    """Normalize JSONB columns that asyncpg hands back as strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _row_to_job(row: asyncpg.Record) -> AggregationJob:
    return AggregationJob(
        id=str(row["id"]),
        country_id=row["country_id"],
        year=row["year"],
        status=JobStatus(row["status"]),
        total_metrics=row["total_metrics"],
        completed_metrics=row["completed_metrics"],
        failed_metrics=row["failed_metrics"],
        current_batch_label=row["current_batch_label"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        logs=[JobLogEntry.from_dict(item) for item in _coerce_json_list(row["logs"])],
    )


def _row_to_data_point(row: asyncpg.Record) -> MetricDataPoint:
    return MetricDataPoint(
        id=str(row["id"]),
        country_id=row["country_id"],
        metric_id=row["metric_id"],
        year=row["year"],
        quarter=row["quarter"],
        value_numeric=row["value_numeric"],
        value_text=row["value_text"],
        source_type=SourceType(row["source_type"]),
        source_url=row["source_url"],
        source_name=row["source_name"],
        confidence_score=row["confidence_score"],
        reasoning=row["ai_reasoning"],
        created_by=row["created_by"],
    )


class PostgresAggregationStore:
    """Aggregation job and metric data storage backed by PostgreSQL."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=settings.database_pool_min_size,
                max_size=settings.database_pool_max_size,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        log_service.log_store_write("*", "ensure_schema")

    # --- Reference data ---

    async def get_country(self, country_id: str) -> Country | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, iso2 FROM countries WHERE id = $1",
                country_id,
            )
        return Country(id=row["id"], name=row["name"], iso2=row["iso2"]) if row else None

    async def load_metric_catalog(self) -> list[MetricDefinition]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, code, name, category, unit, min_value, max_value
                FROM metric_definitions
                ORDER BY category, code
                """
            )
        return [MetricDefinition(**dict(r)) for r in rows]

    # --- Jobs ---

    async def create_job(self, country_id: str, year: int) -> AggregationJob:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO data_aggregation_jobs (country_id, year, status)
                VALUES ($1, $2, 'pending')
                RETURNING {_JOB_COLUMNS}
                """,
                country_id,
                year,
            )
        log_service.log_store_write("data_aggregation_jobs", "insert", key=str(row["id"]))
        return _row_to_job(row)

    async def get_job(self, job_id: str) -> AggregationJob | None:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_JOB_COLUMNS} FROM data_aggregation_jobs WHERE id = $1",
                job_uuid,
            )
        return _row_to_job(row) if row else None

    async def list_jobs(self, country_id: str, limit: int) -> list[AggregationJob]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM data_aggregation_jobs
                WHERE country_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                country_id,
                limit,
            )
        return [_row_to_job(r) for r in rows]

    async def find_active_job(self, country_id: str) -> AggregationJob | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_JOB_COLUMNS}
                FROM data_aggregation_jobs
                WHERE country_id = $1 AND status = ANY($2::text[])
                ORDER BY created_at DESC
                LIMIT 1
                """,
                country_id,
                [s.value for s in ACTIVE_STATUSES],
            )
        return _row_to_job(row) if row else None

    async def _execute_job_update(self, job_id: str, query: str, *args: Any) -> int:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None:
            raise PersistenceError(f"Invalid job id: {job_id}")
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            command_tag = await conn.execute(query, job_uuid, *args)
        # asyncpg returns the command tag, e.g. "UPDATE 1".
        return int(command_tag.rsplit(" ", 1)[-1])

    async def append_job_log(self, job_id: str, entry: JobLogEntry) -> None:
        # Single-statement append keeps concurrent readers from seeing a rewritten array.
        await self._execute_job_update(
            job_id,
            "UPDATE data_aggregation_jobs SET logs = logs || $2::jsonb WHERE id = $1",
            json.dumps([entry.to_dict()]),
        )

    async def update_job_counters(
        self,
        job_id: str,
        *,
        total: int | None = None,
        completed: int | None = None,
        failed: int | None = None,
        current_batch_label: str | None = None,
    ) -> None:
        updates = {
            "total_metrics": total,
            "completed_metrics": completed,
            "failed_metrics": failed,
            "current_batch_label": current_batch_label,
        }
        updates = {k: v for k, v in updates.items() if v is not None}
        if not updates:
            return
        set_clause = ", ".join(f"{k} = ${i + 2}" for i, k in enumerate(updates.keys()))
        await self._execute_job_update(
            job_id,
            f"UPDATE data_aggregation_jobs SET {set_clause} WHERE id = $1",
            *updates.values(),
        )

    async def set_job_status(
        self,
        job_id: str,
        status: JobStatus,
        *,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        expected: tuple[JobStatus, ...] | None = None,
    ) -> bool:
        allowed = [s.value for s in (expected or tuple(JobStatus))]
        updated = await self._execute_job_update(
            job_id,
            """
            UPDATE data_aggregation_jobs
            SET status = $2,
                started_at = COALESCE(started_at, $3),
                completed_at = COALESCE(completed_at, $4)
            WHERE id = $1 AND status = ANY($5::text[])
            """,
            JobStatus(status).value,
            started_at,
            completed_at,
            allowed,
        )
        if not updated:
            return False
        log_service.log_store_write("data_aggregation_jobs", f"status={status}", key=job_id)
        return True

    # --- Metric data ---

    async def find_existing_data_point(
        self, country_id: str, metric_id: str, year: int, quarter: int | None = None
    ) -> MetricDataPoint | None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_DATA_COLUMNS}
                FROM country_metric_data
                WHERE country_id = $1 AND metric_id = $2 AND year = $3
                  AND COALESCE(quarter, 0) = COALESCE($4::integer, 0)
                """,
                country_id,
                metric_id,
                year,
                quarter,
            )
        return _row_to_data_point(row) if row else None

    async def upsert_data_point(self, point: MetricDataPoint) -> MetricDataPoint:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO country_metric_data (
                        country_id, metric_id, year, quarter, value_numeric, value_text,
                        source_type, source_url, source_name, confidence_score,
                        ai_reasoning, created_by
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                    ON CONFLICT (country_id, metric_id, year, (COALESCE(quarter, 0)))
                    DO UPDATE SET
                        value_numeric = EXCLUDED.value_numeric,
                        value_text = EXCLUDED.value_text,
                        source_type = EXCLUDED.source_type,
                        source_url = EXCLUDED.source_url,
                        source_name = EXCLUDED.source_name,
                        confidence_score = EXCLUDED.confidence_score,
                        ai_reasoning = EXCLUDED.ai_reasoning,
                        updated_at = now()
                    RETURNING {_DATA_COLUMNS}
                    """,
                    point.country_id,
                    point.metric_id,
                    point.year,
                    point.quarter,
                    point.value_numeric,
                    point.value_text,
                    point.source_type.value,
                    point.source_url,
                    point.source_name,
                    point.confidence_score,
                    point.reasoning,
                    point.created_by,
                )
        except asyncpg.PostgresError as exc:
            log_service.log_store_write(
                "country_metric_data", "upsert", key=point.metric_id, error=str(exc)
            )
            raise PersistenceError(str(exc)) from exc
        return _row_to_data_point(row)
