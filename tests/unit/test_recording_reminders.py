from datetime import UTC, datetime, timedelta

import pytest
from conftest import seed_collaboration

from app.jobs import recording_reminder_job
from app.models.domain.collaboration_domain import ScheduleSlot
from app.services.collaboration.reminders import (
    REMINDER_LOCK,
    REMINDERS_RUNNING_MESSAGE,
    RecordingReminders,
    due_window,
    recording_start,
)

# 16:00 in Lagos is 15:00 UTC
BOOKED = {"date": "2026-10-20", "time": "16:00", "timezone": "Africa/Lagos", "duration": "60 minutes"}
STARTS_AT = datetime(2026, 10, 20, 15, 0, tzinfo=UTC)


@pytest.fixture
def reminders(store, notifier, locks):
    return RecordingReminders(store=store, notifier=notifier, locks=locks)


def seed_booked(store, **overrides):
    data = {
        "status": "scheduled",
        "escrowStatus": "held",
        "schedulingDetails": BOOKED,
        "recordingUrl": "https://riverside.fm/studio/tech-talk",
    }
    data.update(overrides)
    return seed_collaboration(store, **data)


def test_recording_start_converts_to_utc():
    assert recording_start(ScheduleSlot(**BOOKED)) == STARTS_AT


def test_recording_start_rejects_unknown_zone():
    with pytest.raises(ValueError):
        recording_start(ScheduleSlot(date="2026-10-20", time="16:00", timezone="Mars/Olympus"))


@pytest.mark.parametrize(
    "hours_left, expected",
    [(24.0, "24h"), (23.5, "24h"), (23.0, None), (5.0, None), (1.0, "1h"), (0.2, "1h"), (0.0, None)],
)
def test_due_window(hours_left, expected):
    window = due_window(hours_left)

    assert (window.name if window else None) == expected


@pytest.mark.asyncio
async def test_day_before_reminder_goes_to_both_parties_once(directory, reminders, mailer):
    collab_id = seed_booked(directory)
    now = STARTS_AT - timedelta(hours=23, minutes=30)

    result = await reminders.run(now)

    assert result.collaborations_checked == 1
    assert result.reminders_sent == 1
    assert [(s.type, s.collaboration_id) for s in result.sent] == [("24h", collab_id)]
    assert sorted(m.to for m in mailer.sent) == ["guest@example.com", "owner@example.com"]
    assert "Tomorrow" in mailer.sent[0].subject
    assert "https://riverside.fm/studio/tech-talk" in mailer.sent[0].text
    tracking = directory.raw("recording_reminders", collab_id)
    assert tracking["reminder24hSent"] is True
    assert tracking["reminder1hSent"] is False

    again = await reminders.run(now + timedelta(minutes=10))

    assert again.reminders_sent == 0
    assert len(mailer.sent) == 2


@pytest.mark.asyncio
async def test_hour_before_reminder_follows_day_before(directory, reminders, mailer):
    collab_id = seed_booked(directory)
    await reminders.run(STARTS_AT - timedelta(hours=23, minutes=30))

    result = await reminders.run(STARTS_AT - timedelta(minutes=30))

    assert [s.type for s in result.sent] == ["1h"]
    assert len(mailer.sent) == 4
    assert "1 Hour" in mailer.sent[-1].subject
    assert directory.raw("recording_reminders", collab_id)["reminder1hSent"] is True


@pytest.mark.asyncio
async def test_nothing_due_outside_windows(directory, reminders, mailer):
    collab_id = seed_booked(directory)

    result = await reminders.run(STARTS_AT - timedelta(hours=5))

    assert result.collaborations_checked == 1
    assert result.reminders_sent == 0
    assert mailer.sent == []
    assert directory.raw("recording_reminders", collab_id) is None


@pytest.mark.asyncio
async def test_only_scheduled_collaborations_are_reminded(directory, reminders, mailer):
    seed_collaboration(directory, status="scheduling", schedulingDetails=BOOKED)

    result = await reminders.run(STARTS_AT - timedelta(minutes=30))

    assert result.collaborations_checked == 0
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_reschedule_rearms_reminders(directory, reminders, mailer):
    collab_id = seed_booked(directory)
    directory.seed(
        "recording_reminders",
        {
            "collaborationId": collab_id,
            "recordingAt": "2026-10-13T15:00:00+00:00",
            "reminder24hSent": True,
            "reminder1hSent": True,
        },
        collab_id,
    )

    result = await reminders.run(STARTS_AT - timedelta(minutes=45))

    assert [s.type for s in result.sent] == ["1h"]
    tracking = directory.raw("recording_reminders", collab_id)
    assert tracking["reminder1hSent"] is True
    assert tracking["reminder24hSent"] is False
    assert datetime.fromisoformat(tracking["recordingAt"]) == STARTS_AT


@pytest.mark.asyncio
async def test_failed_delivery_is_retried_next_run(directory, reminders, mailer):
    collab_id = seed_booked(directory)
    now = STARTS_AT - timedelta(minutes=50)
    mailer.fail = True

    first = await reminders.run(now)

    assert first.reminders_sent == 0
    assert directory.raw("recording_reminders", collab_id)["reminder1hSent"] is False

    mailer.fail = False
    second = await reminders.run(now + timedelta(minutes=10))

    assert second.reminders_sent == 1
    assert len(mailer.sent) == 2


@pytest.mark.asyncio
async def test_bad_slot_is_reported_and_others_still_run(directory, reminders, mailer):
    seed_booked(directory, schedulingDetails={**BOOKED, "timezone": "Mars/Olympus"})
    good_id = seed_booked(directory, guestId="guest-2", podcastId="podcast-2")

    result = await reminders.run(STARTS_AT - timedelta(minutes=30))

    assert result.collaborations_checked == 2
    assert len(result.errors) == 1
    assert "Mars/Olympus" in result.errors[0]
    assert [s.collaboration_id for s in result.sent] == [good_id]


@pytest.mark.asyncio
async def test_old_tracking_records_are_purged(directory, reminders):
    now = datetime(2026, 10, 20, 12, 0, tzinfo=UTC)
    directory.seed(
        "recording_reminders",
        {"collaborationId": "old", "recordingAt": (now - timedelta(days=10)).isoformat()},
        "old",
    )
    directory.seed(
        "recording_reminders",
        {"collaborationId": "recent", "recordingAt": (now - timedelta(days=3)).isoformat()},
        "recent",
    )

    result = await reminders.run(now)

    assert result.old_reminders_deleted == 1
    assert directory.raw("recording_reminders", "old") is None
    assert directory.raw("recording_reminders", "recent") is not None


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(directory, reminders, locks, mailer):
    seed_booked(directory)
    locks.held[REMINDER_LOCK] = "other-worker"

    result = await reminders.run(STARTS_AT - timedelta(minutes=30))

    assert result.errors == [REMINDERS_RUNNING_MESSAGE]
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_reminder_job_returns_summary(directory, reminders, monkeypatch):
    seed_booked(directory)
    monkeypatch.setattr(
        "app.services.collaboration.reminders.utc_now",
        lambda: STARTS_AT - timedelta(minutes=30),
    )

    summary = await recording_reminder_job.run_recording_reminder_job(reminders)

    assert summary["reminders_sent"] == 1
    assert summary["collaborations_checked"] == 1
