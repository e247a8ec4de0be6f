"""Tests for the trial-ending reminder sweep.

Learn: FakeUserStore keeps users in a list and applies the same filter as
the SQL query (trial end inside the window, not yet reminded), so the
once-per-trial behaviour can be checked across consecutive days without
a database. The clock is injected, so "tomorrow" is just now + 24h.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from findme.services.cron import CronScheduler
from findme.services.email_hub import EmailHub, EmailQueueFullError
from findme.services.reminder_scheduler import JOB_NAME, ReminderScheduler, format_trial_end

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeUserStore:
    def __init__(self, users=(), fail_fetch=False, fail_update=False):
        self.users = list(users)
        self.fail_fetch = fail_fetch
        self.fail_update = fail_update
        self.windows = []
        self.marked = []

    async def fetch_trial_ending_users(self, window_start, window_end):
        self.windows.append((window_start, window_end))
        if self.fail_fetch:
            raise ConnectionError("database unreachable")
        return [
            u for u in self.users
            if window_start <= u.free_trial <= window_end and not u.reminder_sent
        ]

    async def update_sent_reminder(self, user_ids):
        if self.fail_update:
            raise ConnectionError("database unreachable")
        self.marked.append(list(user_ids))
        for u in self.users:
            if u.id in user_ids:
                u.reminder_sent = True


class FakeEmailQueue:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def queue_notify_free_trial_ending(self, username, trial_end, extra, email):
        if username in self.fail_for:
            raise EmailQueueFullError("email queue is full")
        self.sent.append((username, trial_end, extra, email))


def user(uid: str, trial_end: datetime, reminded: bool = False):
    return SimpleNamespace(
        id=uid,
        username=uid,
        email=f"{uid}@example.com",
        free_trial=trial_end,
        reminder_sent=reminded,
    )


def make_scheduler(store, email, now=NOW):
    clock = SimpleNamespace(value=now)
    scheduler = ReminderScheduler(
        store, email, CronScheduler(), clock=lambda: clock.value
    )
    return scheduler, clock


# ─── Sweep ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sweep_reminds_each_user_once():
    store = FakeUserStore([
        user("u1", NOW + timedelta(hours=36)),
        user("u2", NOW + timedelta(hours=36)),
        user("u3", NOW + timedelta(hours=72)),
        user("u4", NOW + timedelta(hours=10), reminded=True),
    ])
    email = FakeEmailQueue()
    scheduler, clock = make_scheduler(store, email)

    assert await scheduler.sweep() == 2
    assert [s[0] for s in email.sent] == ["u1", "u2"]
    assert store.marked == [["u1", "u2"]]

    # Next day u1/u2 are still inside the window but already reminded;
    # u3 has moved into the window
    clock.value = NOW + timedelta(hours=24)
    assert await scheduler.sweep() == 1
    assert [s[0] for s in email.sent] == ["u1", "u2", "u3"]

    clock.value = NOW + timedelta(hours=48)
    assert await scheduler.sweep() == 0
    assert len(email.sent) == 3


@pytest.mark.asyncio
async def test_sweep_uses_a_48_hour_window():
    store = FakeUserStore()
    scheduler, _ = make_scheduler(store, FakeEmailQueue())

    await scheduler.sweep()

    assert store.windows == [(NOW, NOW + timedelta(hours=48))]
    # Empty batch does not touch the store
    assert store.marked == []


@pytest.mark.asyncio
async def test_email_carries_formatted_trial_end():
    trial_end = datetime(2025, 3, 11, 21, 0, tzinfo=timezone.utc)
    email = FakeEmailQueue()
    scheduler, _ = make_scheduler(FakeUserStore([user("u1", trial_end)]), email)

    await scheduler.sweep()

    assert email.sent == [("u1", "March 11, 2025", "", "u1@example.com")]


@pytest.mark.asyncio
async def test_fetch_failure_sends_and_marks_nothing():
    store = FakeUserStore([user("u1", NOW + timedelta(hours=1))], fail_fetch=True)
    email = FakeEmailQueue()
    scheduler, _ = make_scheduler(store, email)

    assert await scheduler.sweep() == 0
    assert email.sent == []
    assert store.marked == []


@pytest.mark.asyncio
async def test_email_failure_does_not_abort_the_batch():
    store = FakeUserStore([
        user("u1", NOW + timedelta(hours=1)),
        user("u2", NOW + timedelta(hours=2)),
    ])
    email = FakeEmailQueue(fail_for={"u1"})
    scheduler, _ = make_scheduler(store, email)

    assert await scheduler.sweep() == 1
    assert [s[0] for s in email.sent] == ["u2"]
    # Every fetched user is marked, including the one whose enqueue failed
    assert store.marked == [["u1", "u2"]]


@pytest.mark.asyncio
async def test_mark_failure_is_logged_not_raised():
    store = FakeUserStore([user("u1", NOW + timedelta(hours=1))], fail_update=True)
    email = FakeEmailQueue()
    scheduler, _ = make_scheduler(store, email)

    assert await scheduler.sweep() == 1
    assert len(email.sent) == 1


@pytest.mark.asyncio
async def test_sweep_feeds_the_email_hub():
    sent = []
    hub = EmailHub(queue_size=10, workers=1, sender=sent.append)
    hub.run()
    store = FakeUserStore([user("u1", NOW + timedelta(hours=5))])
    scheduler, _ = make_scheduler(store, hub)

    await scheduler.sweep()
    await hub.join()
    await hub.stop()

    assert len(sent) == 1
    assert sent[0].to == "u1@example.com"
    assert "March 10, 2025" in sent[0].body


# ─── Registration ──────────────────────────────────────────


def test_registration_installs_daily_job():
    cron = CronScheduler()
    scheduler = ReminderScheduler(FakeUserStore(), FakeEmailQueue(), cron)

    assert scheduler.trial_ending_reminders() is True
    assert [(j.name, j.expression) for j in cron.jobs] == [(JOB_NAME, "0 9 * * *")]


def test_registration_fails_on_invalid_cron():
    cron = CronScheduler()
    scheduler = ReminderScheduler(
        FakeUserStore(), FakeEmailQueue(), cron, trial_cron="every morning"
    )

    assert scheduler.trial_ending_reminders() is False
    assert cron.jobs == []


def test_format_trial_end():
    assert format_trial_end(datetime(2006, 1, 2, 15, 4, 5)) == "January 2, 2006"
