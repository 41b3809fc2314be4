from __future__ import annotations

import os

# Keep test runs from writing log files or reaching for a database.
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

import pytest  # noqa: E402

from app.models.aggregation import Country, MetricDefinition  # noqa: E402
from app.services.memory_store import InMemoryAggregationStore  # noqa: E402


def make_metrics(count: int, category: str = "economy") -> list[MetricDefinition]:
    return [
        MetricDefinition(
            id=f"m{index:02d}",
            code=f"METRIC_{index:02d}",
            name=f"Metric {index:02d}",
            category=category,
            unit="USD",
        )
        for index in range(1, count + 1)
    ]


@pytest.fixture
def country() -> Country:
    return Country(id="US", name="United States", iso2="US")


@pytest.fixture
def store(country: Country) -> InMemoryAggregationStore:
    return InMemoryAggregationStore(countries=[country], metrics=make_metrics(12))
