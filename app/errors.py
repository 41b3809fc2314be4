from __future__ import annotations

from typing import Any


class AggregationError(Exception):
    """Base class for errors raised by the aggregation engine."""


class JobNotFoundError(AggregationError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobStateError(AggregationError):
    """The job exists but is not in a state that allows the requested transition."""

    def __init__(self, job_id: str, status: str, action: str):
        super().__init__(f"Cannot {action} job {job_id} in status '{status}'")
        self.job_id = job_id
        self.status = status
        self.action = action


class EntityNotFoundError(AggregationError):
    def __init__(self, entity_id: str):
        super().__init__(f"Country not found: {entity_id}")
        self.entity_id = entity_id


class ActiveJobExistsError(AggregationError):
    def __init__(self, job: Any):
        super().__init__("An aggregation job is already running for this country")
        self.job = job


class UpstreamCallError(AggregationError):
    """The research call itself failed (transport, timeout, malformed envelope)."""


class PersistenceError(AggregationError):
    """A value was found but could not be stored."""


class DataPointRejectedError(PersistenceError):
    """A data point failed validation at the persistence boundary."""
