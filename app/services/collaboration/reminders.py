"""
Recording reminders for booked guest appearances.

Each run looks at every ``scheduled`` collaboration and emails both parties
once inside the 24-hour window and once inside the 1-hour window before the
recording. What was sent is tracked per collaboration in
``recording_reminders``; when a reschedule moves the recording, both
reminders are armed again. Tracking records whose recording is older than
the retention period are deleted at the end of each run.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.db.document_store import DocumentStore, get_document_store
from app.infrastructure.observability.logging import get_logger
from app.models.domain.collaboration_domain import (
    Collaboration,
    CollaborationStatus,
    RecordingReminder,
    ReminderRunResult,
    ScheduleSlot,
    SentReminder,
)
from app.repositories.collaboration_repository import (
    COLLABORATIONS,
    RECORDING_REMINDERS,
    CollaborationRepository,
)
from app.services.collaboration.counterparts import resolve_parties
from app.services.errors import DownstreamError
from app.services.notifications import templates
from app.services.notifications.notifier import Notifier, get_notifier
from app.services.redis_client import FastRedisClient, LockError, get_redis
from app.utils.clock import utc_now

logger = get_logger(__name__)

REMINDER_LOCK = "recording-reminders"
REMINDERS_RUNNING_MESSAGE = "Recording reminders already running"


@dataclass(frozen=True)
class ReminderWindow:
    name: str
    flag: str
    # Hours before the recording: (after, until]
    after: float
    until: float

    def contains(self, hours_left: float) -> bool:
        return self.after < hours_left <= self.until


WINDOWS = (
    ReminderWindow("24h", "reminder24hSent", 23, 24),
    ReminderWindow("1h", "reminder1hSent", 0, 1),
)


def recording_start(slot: ScheduleSlot) -> datetime:
    """The slot's start as an aware UTC datetime. Raises ValueError if unparseable."""
    try:
        zone = ZoneInfo(slot.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown timezone {slot.timezone}") from e
    local = datetime.combine(date.fromisoformat(slot.date), time.fromisoformat(slot.time), zone)
    return local.astimezone(UTC)


def due_window(hours_left: float) -> ReminderWindow | None:
    for window in WINDOWS:
        if window.contains(hours_left):
            return window
    return None


class RecordingReminders:
    def __init__(self, store: DocumentStore, notifier: Notifier, locks: FastRedisClient):
        self.store = store
        self.repo = CollaborationRepository(store)
        self.notifier = notifier
        self.locks = locks

    async def run(self, now: datetime | None = None) -> ReminderRunResult:
        """
        Send due reminders and purge old tracking records.

        Returns an empty result carrying an error entry if another run holds
        the lock.

        Raises:
            DownstreamError: Redis could not be reached to take the lock
        """
        token = uuid.uuid4().hex
        try:
            acquired = await self.locks.acquire_lock(
                REMINDER_LOCK, token, settings.RECORDING_REMINDER_LOCK_TTL_SECONDS
            )
        except LockError as e:
            raise DownstreamError("Reminders are temporarily unavailable, please retry") from e

        if not acquired:
            logger.info("Recording reminders skipped, lock held")
            return ReminderRunResult(errors=[REMINDERS_RUNNING_MESSAGE])

        try:
            return await self._run(now or utc_now())
        finally:
            await self.locks.release_lock(REMINDER_LOCK, token)

    async def _run(self, now: datetime) -> ReminderRunResult:
        result = ReminderRunResult()
        docs = await self.store.query(
            COLLABORATIONS, [("status", "==", CollaborationStatus.SCHEDULED.value)]
        )

        for doc in docs:
            result.collaborations_checked += 1
            try:
                await self._remind(Collaboration.from_document(doc), now, result)
            except Exception as e:
                logger.error(
                    "Failed to process recording reminder",
                    collaboration_id=doc.get("id"),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.errors.append(f"Collaboration {doc.get('id')}: {e}")

        result.old_reminders_deleted = await self._purge(now)

        logger.info(
            "Recording reminders finished",
            collaborations_checked=result.collaborations_checked,
            reminders_sent=result.reminders_sent,
            old_reminders_deleted=result.old_reminders_deleted,
            error_count=len(result.errors),
        )
        return result

    async def _remind(
        self, collaboration: Collaboration, now: datetime, result: ReminderRunResult
    ) -> None:
        slot = collaboration.scheduling_details
        if not slot:
            return

        starts_at = recording_start(slot)
        window = due_window((starts_at - now).total_seconds() / 3600)
        if window is None:
            return

        tracking = await self._tracking_for(collaboration.id, starts_at, now)
        if tracking.get(window.flag):
            return

        parties = await resolve_parties(collaboration, self.store)
        sent = False
        for user_id in parties.user_ids:
            sent = await self._send(user_id, window, collaboration, slot) or sent
        if not sent:
            # Left unmarked so the next run inside the window tries again
            return

        await self.store.update(
            RECORDING_REMINDERS, collaboration.id, {window.flag: True}, tracking["version"]
        )
        result.reminders_sent += 1
        result.sent.append(SentReminder(type=window.name, collaboration_id=collaboration.id))
        logger.info(
            "Recording reminder sent", collaboration_id=collaboration.id, window=window.name
        )

    async def _tracking_for(
        self, collaboration_id: str, starts_at: datetime, now: datetime
    ) -> dict[str, Any]:
        doc = await self.store.get(RECORDING_REMINDERS, collaboration_id)
        if doc is None:
            tracking = RecordingReminder(
                collaboration_id=collaboration_id, recording_at=starts_at, created_at=now
            )
            return await self.store.create(
                RECORDING_REMINDERS, tracking.to_document(), collaboration_id
            )

        if RecordingReminder.from_document(doc).recording_at == starts_at:
            return doc

        # Rescheduled since the last run
        changes = {
            "recordingAt": starts_at.isoformat(),
            "reminder24hSent": False,
            "reminder1hSent": False,
        }
        version = await self.store.update(
            RECORDING_REMINDERS, collaboration_id, changes, doc["version"]
        )
        return {**doc, **changes, "version": version}

    async def _send(
        self,
        user_id: str,
        window: ReminderWindow,
        collaboration: Collaboration,
        slot: ScheduleSlot,
    ) -> bool:
        user = await self.repo.get_user(user_id)
        if not user:
            logger.warning(
                "Reminder recipient not found", user_id=user_id, collaboration_id=collaboration.id
            )
            return False
        message = templates.recording_reminder(
            user.email,
            user.label,
            window.name,
            slot,
            collaboration.recording_url,
            collaboration.prep_notes,
            collaboration.id,
        )
        return await self.notifier.dispatch(
            message, f"recording_reminder_{window.name}", collaboration_id=collaboration.id
        )

    async def _purge(self, now: datetime) -> int:
        cutoff = now - timedelta(days=settings.RECORDING_REMINDER_RETENTION_DAYS)
        deleted = 0
        for doc in await self.store.query(RECORDING_REMINDERS):
            try:
                tracking = RecordingReminder.from_document(doc)
            except PydanticValidationError as e:
                logger.warning("Skipping malformed reminder", reminder_id=doc.get("id"), error=str(e))
                continue
            if tracking.recording_at < cutoff and await self.store.delete(
                RECORDING_REMINDERS, tracking.id
            ):
                deleted += 1
        return deleted


def get_recording_reminders() -> RecordingReminders:
    return RecordingReminders(store=get_document_store(), notifier=get_notifier(), locks=get_redis())
