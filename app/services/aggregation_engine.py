from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from app.config import settings
from app.errors import EntityNotFoundError, JobNotFoundError, JobStateError
from app.models.aggregation import (
    ACTIVE_STATUSES,
    AggregationJob,
    Country,
    JobStatus,
    MetricDataPoint,
    MetricDefinition,
    MetricOutcome,
    MetricSearchResult,
    SourceType,
    utc_now,
)
from app.services import metric_search
from app.services.batch_runner import partition, run_batch
from app.services.progress import JobProgressTracker
from app.services.store import AggregationStore, get_store, validate_data_point

SearchFn = Callable[[Country, MetricDefinition, int], Awaitable[MetricSearchResult]]


@dataclass
class _Tally:
    found: int = 0
    not_found: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def completed(self) -> int:
        return self.found + self.not_found + self.skipped


def format_value(value: float | str) -> str:
    if isinstance(value, str):
        return value
    if float(value).is_integer():
        return f"{value:,.0f}"
    return f"{value:,}"


def to_data_point(
    country_id: str,
    metric: MetricDefinition,
    year: int,
    result: MetricSearchResult,
    *,
    created_by: str | None = None,
) -> MetricDataPoint:
    value = result.value
    return MetricDataPoint(
        country_id=country_id,
        metric_id=metric.id,
        year=year,
        quarter=None,
        value_numeric=float(value) if isinstance(value, (int, float)) else None,
        value_text=value if isinstance(value, str) else None,
        source_type=result.source_type,
        source_url=result.source_url,
        source_name=result.source_name,
        confidence_score=result.confidence_score,
        reasoning=result.reasoning,
        created_by=created_by,
    )


class AggregationEngine:
    """Drives one aggregation job from pending to a terminal state.

    Flow:
      1. Mark the job running, load the country and the metric catalog
      2. Split the catalog into fixed-size batches
      3. Before each batch, re-read the job and stop if it was cancelled
      4. Run one metric search per metric in the batch concurrently
      5. Fold the settled batch into the log, the data store and the counters
      6. Mark the job completed unless a cancel got there first
    """

    def __init__(
        self,
        store: AggregationStore | None = None,
        *,
        batch_size: int | None = None,
        search: SearchFn | None = None,
    ):
        self.store = store or get_store()
        self.batch_size = max(int(batch_size or settings.aggregation_batch_size), 1)
        self.search = search or metric_search.search_for_metric
        self.created_by = settings.aggregation_created_by

    async def run(self, job_id: str) -> AggregationJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PENDING:
            raise JobStateError(job_id, job.status.value, "start")

        tracker = JobProgressTracker(self.store, job_id)
        started = await self.store.set_job_status(
            job_id, JobStatus.RUNNING, started_at=utc_now(), expected=(JobStatus.PENDING,)
        )
        if not started:
            # Cancelled between the read above and the transition.
            current = await self.store.get_job(job_id)
            raise JobStateError(job_id, current.status.value if current else "missing", "start")

        try:
            country = await self.store.get_country(job.country_id)
            if country is None:
                raise EntityNotFoundError(job.country_id)
            metrics = await self.store.load_metric_catalog()
        except Exception as exc:
            await self._fail(tracker, f"Setup failed: {exc}")
            raise

        try:
            return await self._run_batches(job, country, metrics, tracker)
        except Exception as exc:
            await self._fail(tracker, f"Job failed: {exc}")
            raise

    async def _run_batches(
        self,
        job: AggregationJob,
        country: Country,
        metrics: list[MetricDefinition],
        tracker: JobProgressTracker,
    ) -> AggregationJob:
        total = len(metrics)
        await tracker.set_total(total)
        await tracker.info(f"Starting aggregation for {country.name} ({job.year})")
        await tracker.info(f"Total metrics: {total} (processing {self.batch_size} in parallel)")

        tally = _Tally()
        for batch in partition(metrics, self.batch_size):
            if await self._cancelled(job.id):
                await tracker.info("Job cancelled")
                return await self._snapshot(job.id)

            codes = ", ".join(m.code for m in batch.items)
            await tracker.info(f"{batch.label}: {codes}")
            await tracker.set_batch_label(batch.label)

            settled = await run_batch(
                batch, lambda metric: self._process_metric(job, country, metric)
            )
            for metric, outcome in zip(batch.items, settled):
                if isinstance(outcome, BaseException):
                    outcome = MetricOutcome(metric=metric, error=str(outcome) or type(outcome).__name__)
                await self._fold_outcome(tracker, job, outcome, tally)

            await tracker.flush_counters(completed=tally.completed, failed=tally.failed)

        completed = await self.store.set_job_status(
            job.id, JobStatus.COMPLETED, completed_at=utc_now(), expected=(JobStatus.RUNNING,)
        )
        if not completed:
            await tracker.info("Job cancelled")
            return await self._snapshot(job.id)

        await tracker.info(
            f"Done! {tally.found} found, {tally.skipped} skipped, {tally.failed} failed"
        )
        return await self._snapshot(job.id)

    async def _fail(self, tracker: JobProgressTracker, message: str) -> None:
        """Mark a running job failed after an unexpected error; the caller re-raises."""
        try:
            await self.store.set_job_status(
                tracker.job_id, JobStatus.FAILED, completed_at=utc_now(), expected=ACTIVE_STATUSES
            )
            await tracker.error(message)
        except Exception:
            logger.exception(f"[Aggregation] Could not record failure for job {tracker.job_id}")

    async def _snapshot(self, job_id: str) -> AggregationJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _cancelled(self, job_id: str) -> bool:
        current = await self.store.get_job(job_id)
        return current is None or current.status == JobStatus.FAILED

    async def _process_metric(
        self, job: AggregationJob, country: Country, metric: MetricDefinition
    ) -> MetricOutcome:
        try:
            existing = await self.store.find_existing_data_point(country.id, metric.id, job.year)
            if existing and existing.source_type != SourceType.NEWS_DERIVED:
                logger.debug(
                    f"[Aggregation] {metric.code}: Skipping (already have {existing.source_type} data)"
                )
                return MetricOutcome(metric=metric, existing=existing, skipped=True)

            result = await self.search(country, metric, job.year)
            return MetricOutcome(metric=metric, existing=existing, result=result)
        except Exception as exc:
            return MetricOutcome(metric=metric, error=str(exc) or type(exc).__name__)

    async def _fold_outcome(
        self,
        tracker: JobProgressTracker,
        job: AggregationJob,
        outcome: MetricOutcome,
        tally: _Tally,
    ) -> None:
        code = outcome.metric.code
        if outcome.error is not None:
            tally.failed += 1
            await tracker.error(f"{code}: {outcome.error}")
            return

        if outcome.skipped:
            tally.skipped += 1
            return

        result = outcome.result
        if result is None or not result.found or result.value is None:
            tally.not_found += 1
            await tracker.warning(f"{code}: No data found")
            return

        point = to_data_point(
            job.country_id, outcome.metric, job.year, result, created_by=self.created_by
        )
        try:
            validate_data_point(outcome.metric, point)
            await self.store.upsert_data_point(point)
        except Exception as exc:
            tally.failed += 1
            await tracker.error(f"{code}: DB error - {exc}")
            return

        tally.found += 1
        confidence = point.confidence_score if point.confidence_score is not None else "?"
        await tracker.success(
            f"{code}: {format_value(result.value)} ({result.source_type.value}, conf: {confidence}/10)"
        )
