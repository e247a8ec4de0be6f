"""Trial-ending reminders — a daily sweep that queues notification emails.

Learn: Every day at 09:00 (scheduler.trial_cron) the sweep:
1. Computes the window [now, now + 48h]
2. Asks the user store for users whose free trial ends inside the window
   and who have not been reminded yet
3. Queues one trial-ending email per user (fire-and-forget)
4. Marks all of those users as reminded, in one UPDATE

The reminder_sent flag is what makes the sweep idempotent: a user is
picked up by at most one sweep per trial, however many days the window
overlaps. If the fetch fails nothing is sent and nothing is marked. A
failed email enqueue is logged and the batch carries on.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol, Sequence

import structlog

from findme.services.cron import CronScheduler

logger = structlog.get_logger()

DEFAULT_TRIAL_CRON = "0 9 * * *"
JOB_NAME = "trial_ending_reminders"


class TrialUser(Protocol):
    id: str
    username: str
    email: str
    free_trial: datetime


class ReminderStore(Protocol):
    async def fetch_trial_ending_users(
        self, window_start: datetime, window_end: datetime
    ) -> Sequence[TrialUser]: ...

    async def update_sent_reminder(self, user_ids: list[str]) -> None: ...


class ReminderEmailQueue(Protocol):
    def queue_notify_free_trial_ending(
        self, username: str, trial_end: str, extra: str, email: str
    ) -> None: ...


def format_trial_end(value: datetime) -> str:
    """Human date for the email body, e.g. 'January 2, 2006'."""
    return f"{value:%B} {value.day}, {value.year}"


class ReminderScheduler:
    """Installs and runs the trial-ending reminder sweep."""

    def __init__(
        self,
        store: ReminderStore,
        email: ReminderEmailQueue,
        cron: CronScheduler,
        *,
        trial_cron: str = DEFAULT_TRIAL_CRON,
        window: timedelta = timedelta(hours=48),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.email = email
        self.cron = cron
        self.trial_cron = trial_cron
        self.window = window
        self.clock = clock or cron.now

    def trial_ending_reminders(self) -> bool:
        """Register the daily sweep. Returns False if registration failed."""
        try:
            self.cron.add_job(self.trial_cron, self.sweep, name=JOB_NAME)
        except ValueError as e:
            logger.error("reminders.register_failed", cron=self.trial_cron, error=str(e))
            return False
        return True

    async def sweep(self) -> int:
        """Run one sweep. Returns the number of reminders queued."""
        window_start = self.clock()
        window_end = window_start + self.window
        log = logger.bind(window_start=window_start.isoformat(), window_end=window_end.isoformat())
        log.info("reminders.sweep_started")

        try:
            users = await self.store.fetch_trial_ending_users(window_start, window_end)
        except Exception as e:
            log.error("reminders.fetch_failed", error=str(e))
            return 0

        if not users:
            log.info("reminders.sweep_empty")
            return 0

        ids = []
        queued = 0
        for user in users:
            ids.append(user.id)
            try:
                self.email.queue_notify_free_trial_ending(
                    user.username, format_trial_end(user.free_trial), "", user.email
                )
            except Exception as e:
                log.warning("reminders.email_failed", user_id=user.id, error=str(e))
                continue
            queued += 1

        try:
            await self.store.update_sent_reminder(ids)
        except Exception as e:
            log.error("reminders.mark_failed", users=len(ids), error=str(e))

        log.info("reminders.sweep_completed", users=len(ids), queued=queued)
        return queued
