"""
Scheduler entry point for the nightly learning job.

    python -m app.jobs.nightly_learning [--limit N] [--budget SECONDS] [--trigger NAME]

Prints the run summary as JSON. Exit code 1 when the run failed or
another run holds the job lock. Overdue proposals are expired by the
job itself before it selects experiences.
"""
from __future__ import annotations

import argparse
import json

from app.core.config import settings
from app.core.errors import JobAlreadyRunningError
from app.core.logging import configure_logging
from app.services.learning_job import NightlyLearningJob


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Run the Sage nightly learning job once.")
    ap.add_argument("--limit", type=int, default=settings.LEARNING_BATCH_LIMIT)
    ap.add_argument("--budget", type=float, default=settings.LEARNING_TIME_BUDGET_SECONDS)
    ap.add_argument("--trigger", default="scheduled")
    args = ap.parse_args(argv)

    configure_logging(settings.LOG_LEVEL)

    try:
        summary = NightlyLearningJob().run(
            batch_limit=args.limit,
            time_budget=args.budget,
            trigger=args.trigger,
        )
    except JobAlreadyRunningError as exc:
        print(json.dumps({"success": False, **exc.to_dict()}, indent=2))
        return 1

    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
