"""Country metric aggregation

Simple CLI for running one aggregation job in the foreground.
"""

import argparse
import asyncio
import sys

from app.config import settings
from app.errors import AggregationError
from app.services import job_control
from app.services.aggregation_engine import AggregationEngine
from app.services.database import PostgresAggregationStore
from app.services.progress import build_status_snapshot
from app.services.store import get_store


async def run_aggregation(country_id: str, year: int, batch_size: int | None = None) -> int:
    """Create a job for the country/year and run it to completion."""
    store = get_store()
    try:
        job = await job_control.create_job(store, country_id, year)
        print(f"Aggregation job {job.id}: {country_id} ({year})")
        print("-" * 50)

        engine = AggregationEngine(store, batch_size=batch_size)
        finished = await engine.run(job.id)
    finally:
        if isinstance(store, PostgresAggregationStore):
            await store.close()

    snapshot = build_status_snapshot(finished)
    for entry in snapshot["logs"]:
        print(f"[{entry['level']:<7}] {entry['message']}")

    progress = snapshot["progress"]
    print(f"\n{'=' * 50}")
    print(f"Status: {snapshot['status']}")
    print(
        f"Progress: {progress['completed']}/{progress['total']} "
        f"({progress['percent']}%), {progress['failed']} failed"
    )
    return 0 if finished.status.value == "completed" else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Aggregate country metrics via AI web research")
    parser.add_argument("--country", required=True, help="Country id, e.g. US")
    parser.add_argument("--year", type=int, required=True, help="Target year")
    parser.add_argument("--batch-size", type=int, default=None, help="Metrics searched in parallel")
    parser.add_argument(
        "--backend",
        choices=["postgres", "memory"],
        default=None,
        help=f"Persistence backend (default: {settings.persistence_backend})",
    )
    args = parser.parse_args()

    if args.backend:
        settings.persistence_backend = args.backend

    try:
        exit_code = asyncio.run(run_aggregation(args.country, args.year, args.batch_size))
    except AggregationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
