"""Cron scheduler — runs coroutine jobs on cron expressions.

Learn: A minimal in-process scheduler: one asyncio task per registered
job, each sleeping until croniter's next fire time, then awaiting the job.
Each job keeps one croniter iterator, so fire times only move forward.
A job that raises is logged and rescheduled; it never kills the loop.

Times are wall-clock in the configured timezone (server-local when none
is set), so "0 9 * * *" means 09:00 where the server, or the configured
zone, is.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

import structlog
from croniter import croniter

logger = structlog.get_logger()

CronFunc = Callable[[], Awaitable[object]]


@dataclass
class CronJob:
    name: str
    expression: str
    func: CronFunc
    runs: int = 0
    next_run: Optional[datetime] = None


class CronScheduler:
    """Registers named jobs by cron expression and fires them on schedule.

    Usage:
        cron = CronScheduler(timezone="Europe/Berlin")
        cron.add_job("0 9 * * *", reminders.sweep, name="trial_ending_reminders")
        cron.start()
        ...
        await cron.stop()
    """

    def __init__(self, timezone: str = ""):
        self.tz: Optional[tzinfo] = ZoneInfo(timezone) if timezone else None
        self.jobs: list[CronJob] = []
        self._tasks: list[asyncio.Task] = []
        self._running = False

    def now(self) -> datetime:
        if self.tz is not None:
            return datetime.now(self.tz)
        return datetime.now().astimezone()

    def add_job(self, expression: str, func: CronFunc, name: str) -> CronJob:
        """Register a job. Raises ValueError for an invalid expression."""
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")

        job = CronJob(name=name, expression=expression, func=func)
        self.jobs.append(job)
        if self._running:
            self._spawn(job)
        logger.info("cron.job_registered", job=name, expression=expression)
        return job

    def next_fire(self, job: CronJob, after: Optional[datetime] = None) -> datetime:
        return croniter(job.expression, after or self.now()).get_next(datetime)

    def start(self) -> None:
        self._running = True
        for job in self.jobs:
            self._spawn(job)
        logger.info("cron.started", jobs=[job.name for job in self.jobs])

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("cron.stopped")

    def _spawn(self, job: CronJob) -> None:
        self._tasks.append(asyncio.create_task(self._loop(job), name=f"cron-{job.name}"))

    async def _loop(self, job: CronJob) -> None:
        # Each fire time follows the previous one, so a clock that reads
        # slightly early after a sleep cannot yield the same slot twice
        schedule = croniter(job.expression, self.now())
        while True:
            fire_at = schedule.get_next(datetime)
            job.next_run = fire_at
            await asyncio.sleep(max((fire_at - self.now()).total_seconds(), 0))
            await self.run_job(job)

    async def run_job(self, job: CronJob) -> None:
        """Run one job now, logging (not raising) its failure."""
        log = logger.bind(job=job.name)
        log.info("cron.job_started")
        try:
            await job.func()
        except Exception:
            log.exception("cron.job_failed")
        finally:
            job.runs += 1
