from __future__ import annotations

from app.services.store import AggregationStore, get_store


def get_aggregation_store() -> AggregationStore:
    """Store dependency; tests override it with an in-memory store."""
    return get_store()
