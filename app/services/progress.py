from __future__ import annotations

import math
from typing import Any

from app.models.aggregation import AggregationJob, JobLogEntry, LogLevel
from app.services import logger as log_service
from app.services.store import AggregationStore


def progress_percent(completed: int, total: int) -> int:
    """Whole-number completion percentage, half rounded up, 0 for an empty job."""
    if total <= 0:
        return 0
    return min(math.floor(100 * completed / total + 0.5), 100)


def build_status_snapshot(job: AggregationJob) -> dict[str, Any]:
    """The view a polling client renders its progress bar from."""
    return {
        "status": job.status.value,
        "current_batch_label": job.current_batch_label,
        "progress": {
            "completed": job.completed_metrics,
            "failed": job.failed_metrics,
            "total": job.total_metrics,
            "percent": progress_percent(job.completed_metrics, job.total_metrics),
        },
        "logs": [entry.to_dict() for entry in job.logs],
    }


class JobProgressTracker:
    """Writes one job's log entries and counters through the store.

    Only the task that owns the job writes through a tracker. Log writes are
    appends; counters are flushed once per settled batch.
    """

    def __init__(self, store: AggregationStore, job_id: str):
        self.store = store
        self.job_id = job_id

    async def log(self, level: LogLevel | str, message: str) -> JobLogEntry:
        entry = JobLogEntry.create(level, message)
        log_service.log_job_step(self.job_id, entry.level.value, message)
        await self.store.append_job_log(self.job_id, entry)
        return entry

    async def info(self, message: str) -> JobLogEntry:
        return await self.log(LogLevel.INFO, message)

    async def success(self, message: str) -> JobLogEntry:
        return await self.log(LogLevel.SUCCESS, message)

    async def warning(self, message: str) -> JobLogEntry:
        return await self.log(LogLevel.WARNING, message)

    async def error(self, message: str) -> JobLogEntry:
        return await self.log(LogLevel.ERROR, message)

    async def set_total(self, total: int) -> None:
        await self.store.update_job_counters(self.job_id, total=total)

    async def set_batch_label(self, label: str) -> None:
        await self.store.update_job_counters(self.job_id, current_batch_label=label)

    async def flush_counters(self, *, completed: int, failed: int) -> None:
        await self.store.update_job_counters(self.job_id, completed=completed, failed=failed)
