"""Recommendation hub — asks the recommendation service to recompute.

Learn: Same topology as the embedding hub (bounded queue, worker pool,
one channel per worker, linear backoff) with a much smaller job: a kind
and an id. Handlers call queue_user_recommendation(project_id) after a
project changes and queue_project_recommendation(user_id) after a
profile changes; the service recomputes and caches the ranking.

get_recommendation() is the synchronous path used when a handler needs
the ids right now: one short-lived channel, one attempt, errors
propagate to the caller.
"""

import asyncio
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable

import structlog

from findme.rpc.channel import is_unavailable
from findme.rpc.recommendation import RecommendationClient

logger = structlog.get_logger()

MAX_ATTEMPTS = 3


class RecommendationJobKind(str, Enum):
    USER_REC = "user_rec"
    PROJECT_REC = "project_rec"


@dataclass
class RecommendationJob:
    kind: RecommendationJobKind
    id: str
    max_attempts: int = MAX_ATTEMPTS
    attempts: int = 0


@dataclass
class RecommendationStats:
    enqueued: int = 0
    processed: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0


async def _process_job(
    client: RecommendationClient, job: RecommendationJob
) -> list[str]:
    if job.kind is RecommendationJobKind.USER_REC:
        return await client.user_recommendation(job.id)
    return await client.project_recommendation(job.id)


class RecommendationHub:
    """Bounded job queue + worker pool in front of the recommendation service."""

    def __init__(
        self,
        queue_size: int,
        workers: int,
        rpc_address: str,
        *,
        retry_backoff_seconds: float = 3.0,
        call_timeout_seconds: float = 30.0,
        client_factory: Callable[..., RecommendationClient] = RecommendationClient,
    ):
        self.jobs: asyncio.Queue[RecommendationJob] = asyncio.Queue(maxsize=queue_size)
        self.quit = asyncio.Event()
        self.worker_count = workers
        self.rpc_address = rpc_address
        self.retry_backoff_seconds = retry_backoff_seconds
        self.call_timeout_seconds = call_timeout_seconds
        self.stats = RecommendationStats()
        self._client_factory = client_factory
        self._workers: list[asyncio.Task] = []
        self._retries: set[asyncio.Task] = set()

    def run(self) -> None:
        for i in range(self.worker_count):
            self._workers.append(
                asyncio.create_task(self._worker(i), name=f"recommendation-worker-{i}")
            )
        logger.info(
            "recommendation_hub.started",
            workers=self.worker_count,
            rpc_address=self.rpc_address,
        )

    async def stop(self) -> None:
        logger.info("recommendation_hub.stopping", queued=self.jobs.qsize())
        self.quit.set()
        # Workers first; after quit a failed call schedules no retry
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        retries = list(self._retries)
        for task in retries:
            task.cancel()
        await asyncio.gather(*retries, return_exceptions=True)
        logger.info("recommendation_hub.stopped", **asdict(self.stats))

    def snapshot(self) -> dict:
        return {
            "queued": self.jobs.qsize(),
            "workers": len(self._workers),
            **asdict(self.stats),
        }

    # ─── Producers ────────────────────────────────────────

    async def queue_user_recommendation(self, project_id: str) -> None:
        await self._enqueue(RecommendationJob(RecommendationJobKind.USER_REC, project_id))

    async def queue_project_recommendation(self, user_id: str) -> None:
        await self._enqueue(RecommendationJob(RecommendationJobKind.PROJECT_REC, user_id))

    async def _enqueue(self, job: RecommendationJob) -> None:
        await self.jobs.put(job)
        self.stats.enqueued += 1

    async def get_recommendation(
        self, entity_id: str, kind: RecommendationJobKind
    ) -> list[str]:
        """Fetch recommendations immediately (one attempt, no queue)."""
        client = self._client_factory(
            self.rpc_address, timeout=self.call_timeout_seconds
        )
        try:
            return await _process_job(
                client, RecommendationJob(kind, entity_id, max_attempts=1)
            )
        finally:
            await client.close()

    # ─── Workers ──────────────────────────────────────────

    async def _worker(self, worker_id: int) -> None:
        client = self._client_factory(
            self.rpc_address, timeout=self.call_timeout_seconds
        )
        log = logger.bind(worker=worker_id)
        quit_wait = asyncio.ensure_future(self.quit.wait())
        try:
            while not self.quit.is_set():
                next_job = asyncio.ensure_future(self.jobs.get())
                done, _ = await asyncio.wait(
                    {next_job, quit_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_job not in done:
                    next_job.cancel()
                    break
                job = next_job.result()
                try:
                    await _process_job(client, job)
                except Exception as e:
                    await self._on_failure(client, job, e, log)
                else:
                    self.stats.processed += 1
                finally:
                    self.jobs.task_done()
        finally:
            quit_wait.cancel()
            await client.close()

    async def _on_failure(
        self, client: RecommendationClient, job: RecommendationJob, error: Exception, log
    ) -> None:
        self.stats.failed += 1
        job.attempts += 1

        if is_unavailable(error):
            try:
                await client.reconnect()
            except Exception as e:
                log.error("recommendation.reconnect_failed", error=str(e))

        if self.quit.is_set():
            log.warning(
                "recommendation.job_abandoned",
                kind=job.kind.value,
                entity_id=job.id,
                attempts=job.attempts,
                error=str(error),
            )
            return

        if job.attempts > job.max_attempts:
            self.stats.dropped += 1
            log.error(
                "recommendation.job_dropped",
                kind=job.kind.value,
                entity_id=job.id,
                attempts=job.attempts,
                error=str(error),
            )
            return

        delay = job.attempts * self.retry_backoff_seconds
        log.warning(
            "recommendation.job_failed",
            kind=job.kind.value,
            entity_id=job.id,
            attempts=job.attempts,
            retry_in=delay,
            error=str(error),
        )
        task = asyncio.create_task(self._requeue(job, delay))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _requeue(self, job: RecommendationJob, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.jobs.put(job)
        self.stats.retried += 1
