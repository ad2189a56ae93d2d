"""
Scheduled recording reminders.

Runs hourly by default; the 24h and 1h reminder windows are an hour wide,
so a longer interval would skip reminders.
"""

from collections.abc import Callable
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.runtime import run_every, worker_resources
from app.services.collaboration.reminders import RecordingReminders, get_recording_reminders

logger = get_logger(__name__)


async def run_recording_reminder_job(
    reminders: RecordingReminders | None = None,
) -> dict[str, Any]:
    reminders = reminders or get_recording_reminders()
    result = await reminders.run()
    logger.info(
        "Recording reminder job completed",
        collaborations_checked=result.collaborations_checked,
        reminders_sent=result.reminders_sent,
        old_reminders_deleted=result.old_reminders_deleted,
        error_count=len(result.errors),
    )
    return result.model_dump()


async def run_recording_reminders_once() -> None:
    async with worker_resources():
        await run_recording_reminder_job()


async def start_recording_reminder_scheduler(
    reminders_factory: Callable[[], RecordingReminders] = get_recording_reminders,
    interval_minutes: int | None = None,
    max_cycles: int | None = None,
) -> None:
    interval = (interval_minutes or settings.RECORDING_REMINDER_INTERVAL_MINUTES) * 60
    await run_every(
        lambda: run_recording_reminder_job(reminders_factory()),
        interval,
        name="recording_reminders",
        max_cycles=max_cycles,
    )


async def run_recording_reminder_scheduler() -> None:
    async with worker_resources():
        await start_recording_reminder_scheduler()
