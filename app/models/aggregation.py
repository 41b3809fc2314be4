from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class SourceType(StrEnum):
    OFFICIAL = "OFFICIAL"
    AGGREGATOR = "AGGREGATOR"
    NEWS_DERIVED = "NEWS_DERIVED"


class LogLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Country:
    id: str
    name: str
    iso2: str | None = None


@dataclass(slots=True)
class MetricDefinition:
    id: str
    code: str
    name: str
    category: str
    unit: str | None = None
    min_value: float | None = None
    max_value: float | None = None


@dataclass(slots=True)
class JobLogEntry:
    timestamp: str
    level: LogLevel
    message: str

    @classmethod
    def create(cls, level: LogLevel | str, message: str) -> "JobLogEntry":
        return cls(timestamp=utc_now().isoformat(), level=LogLevel(level), message=message)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "level": self.level.value, "message": self.message}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "JobLogEntry":
        return cls(
            timestamp=str(payload.get("timestamp", "")),
            level=LogLevel(payload.get("level", LogLevel.INFO.value)),
            message=str(payload.get("message", "")),
        )


@dataclass(slots=True)
class AggregationJob:
    id: str
    country_id: str
    year: int
    status: JobStatus = JobStatus.PENDING
    total_metrics: int = 0
    completed_metrics: int = 0
    failed_metrics: int = 0
    current_batch_label: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    logs: list[JobLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "country_id": self.country_id,
            "year": self.year,
            "status": self.status.value,
            "total_metrics": self.total_metrics,
            "completed_metrics": self.completed_metrics,
            "failed_metrics": self.failed_metrics,
            "current_batch_label": self.current_batch_label,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "logs": [entry.to_dict() for entry in self.logs],
        }


@dataclass(slots=True)
class MetricDataPoint:
    country_id: str
    metric_id: str
    year: int
    source_type: SourceType
    quarter: int | None = None
    value_numeric: float | None = None
    value_text: str | None = None
    confidence_score: int | None = None
    source_url: str | None = None
    source_name: str | None = None
    reasoning: str | None = None
    created_by: str | None = None
    id: str | None = None

    @property
    def key(self) -> tuple[str, str, int, int | None]:
        return (self.country_id, self.metric_id, self.year, self.quarter)


@dataclass(slots=True)
class MetricSearchResult:
    found: bool
    value: float | str | None = None
    source_type: SourceType = SourceType.NEWS_DERIVED
    source_url: str | None = None
    source_name: str | None = None
    confidence_score: int | None = None
    reasoning: str | None = None

    @classmethod
    def not_found(cls) -> "MetricSearchResult":
        return cls(found=False)


@dataclass(slots=True)
class MetricOutcome:
    """What happened to one metric inside a batch, before it is folded into the job."""

    metric: MetricDefinition
    existing: MetricDataPoint | None = None
    result: MetricSearchResult | None = None
    skipped: bool = False
    error: str | None = None
