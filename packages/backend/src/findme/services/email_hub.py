"""Email hub — bounded in-memory queue of outgoing notification emails.

Learn: Callers never wait on SMTP. queue_* methods render a plain-text
message and put it on the queue without blocking; a small worker pool
sends it. smtplib is blocking, so each send runs in a thread via
asyncio.to_thread. A failed send is logged and dropped.

Only the trial-ending notice is needed by the reminder sweep; other
notices would be added here as further queue_* methods.
"""

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Callable, Optional

import structlog

from findme.config import EmailSettings

logger = structlog.get_logger()

TRIAL_ENDING_SUBJECT = "Your FindMe free trial is ending soon"

TRIAL_ENDING_BODY = """\
Hello {username},

Your FindMe free trial ends on {trial_end}.

Subscribe before then to keep matching with collaborators, applying to
projects and chatting with your team without interruption.
{extra}
This is an automated email, please do not reply.
"""


class EmailQueueFullError(Exception):
    """Raised when the email queue cannot accept a message without blocking."""


@dataclass
class EmailJob:
    to: str
    subject: str
    body: str


class SMTPSender:
    """Deliver an EmailJob over SMTP with STARTTLS. Blocking."""

    def __init__(self, config: EmailSettings):
        self.config = config

    def __call__(self, job: EmailJob) -> None:
        if not self.config.sender:
            logger.warning("email.sender_not_configured", to=job.to)
            return

        msg = EmailMessage()
        msg["From"] = self.config.sender
        msg["To"] = job.to
        msg["Subject"] = job.subject
        msg.set_content(job.body)

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=20) as smtp:
            smtp.ehlo()
            smtp.starttls()
            smtp.ehlo()
            if self.config.smtp_user and self.config.smtp_password:
                smtp.login(self.config.smtp_user, self.config.smtp_password)
            smtp.send_message(msg)


class EmailHub:
    """Non-blocking email queue with a pool of sending workers."""

    def __init__(
        self,
        queue_size: int,
        workers: int,
        sender: Optional[Callable[[EmailJob], None]] = None,
    ):
        self.queue: asyncio.Queue[EmailJob] = asyncio.Queue(maxsize=queue_size)
        self.worker_count = workers
        self.sender = sender
        self.sent = 0
        self.failed = 0
        self._workers: list[asyncio.Task] = []

    def run(self) -> None:
        for i in range(self.worker_count):
            self._workers.append(asyncio.create_task(self._worker(), name=f"email-worker-{i}"))
        logger.info("email_hub.started", workers=self.worker_count)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("email_hub.stopped", sent=self.sent, failed=self.failed, abandoned=self.queue.qsize())

    def snapshot(self) -> dict:
        return {
            "queued": self.queue.qsize(),
            "workers": len(self._workers),
            "sent": self.sent,
            "failed": self.failed,
        }

    async def join(self) -> None:
        """Wait until every queued email has been handled."""
        await self.queue.join()

    # ─── Producers ────────────────────────────────────────

    def queue_notify_free_trial_ending(
        self, username: str, trial_end: str, extra: str, email: str
    ) -> None:
        body = TRIAL_ENDING_BODY.format(
            username=username,
            trial_end=trial_end,
            extra=f"\n{extra}\n" if extra else "",
        )
        self._enqueue(EmailJob(to=email, subject=TRIAL_ENDING_SUBJECT, body=body))

    def _enqueue(self, job: EmailJob) -> None:
        try:
            self.queue.put_nowait(job)
        except asyncio.QueueFull:
            raise EmailQueueFullError(
                f"email queue is full ({self.queue.maxsize} pending)"
            ) from None

    # ─── Workers ──────────────────────────────────────────

    async def _worker(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                if self.sender is not None:
                    await asyncio.to_thread(self.sender, job)
                self.sent += 1
                logger.info("email.sent", to=job.to, subject=job.subject)
            except Exception as e:
                self.failed += 1
                logger.error("email.send_failed", to=job.to, error=str(e))
            finally:
                self.queue.task_done()
