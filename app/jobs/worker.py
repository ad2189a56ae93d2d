"""
Worker process entrypoint.

    python -m app.jobs.worker match_sweep                # sweep on an interval, forever
    python -m app.jobs.worker match_sweep_once           # one sweep, then exit
    python -m app.jobs.worker recording_reminders        # reminders every hour, forever
    python -m app.jobs.worker recording_reminders_once   # one reminder run, then exit

The job may also be chosen with WORKER_JOB; the command line wins.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.match_sweep_job import run_match_sweep_once, run_match_sweep_scheduler
from app.jobs.recording_reminder_job import (
    run_recording_reminder_scheduler,
    run_recording_reminders_once,
)

logger = get_logger(__name__)

DEFAULT_JOB = "match_sweep"

JOB_REGISTRY: dict[str, Callable[[], Awaitable[None]]] = {
    "match_sweep": run_match_sweep_scheduler,
    "match_sweep_once": run_match_sweep_once,
    "recording_reminders": run_recording_reminder_scheduler,
    "recording_reminders_once": run_recording_reminders_once,
}


def requested_job(argv: list[str] | None = None) -> str:
    args = sys.argv[1:] if argv is None else argv
    name = args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return name.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    name = (job_name or requested_job()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}")

    logger.info("Worker starting", job=name, environment=settings.environment)
    await job()


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
