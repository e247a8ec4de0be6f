"""Embedding hub — fans user/project mutations out to the embedding service.

Learn: HTTP handlers commit to Postgres first, then call one of the
queue_* coroutines. The hub accepts the job and returns; a pool of
workers drains the bounded queue and issues the matching RPC:

  queue_user_create ──┐
  queue_project_update├─► asyncio.Queue(maxsize) ─► worker[i] ─► gRPC
  ...                 ┘         ▲                      │
                                └── retry after n×3s ◄─┘ (on error)

Delivery is at-least-once: the embedding service upserts, so a retried
or duplicated job is harmless. When the queue is full the producer's
await blocks until a worker takes a job (backpressure).

Each worker owns one EmbeddingClient (one long-lived channel). Workers
never share a channel and never hold a lock across an await.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

import structlog

from findme.rpc.channel import is_unavailable
from findme.rpc.embedding import EmbeddingClient

logger = structlog.get_logger()

DEFAULT_MAX_ATTEMPTS = 3
STATUS_MAX_ATTEMPTS = 2


# ─── Jobs ───────────────────────────────────────────────────


class EmbeddingJobKind(str, Enum):
    USER_CREATE = "user_create"
    USER_UPDATE = "user_update"
    USER_STATUS = "user_status"
    USER_DELETE = "user_delete"
    PROJECT_CREATE = "project_create"
    PROJECT_UPDATE = "project_update"
    PROJECT_STATUS = "project_status"
    PROJECT_DELETE = "project_delete"


@dataclass
class UserFacet:
    id: str
    bio: str = ""
    status: bool = False
    skills: list[str] = field(default_factory=list)
    interests: list[str] = field(default_factory=list)


@dataclass
class ProjectFacet:
    id: str
    title: str = ""
    description: str = ""
    status: bool = False
    skills: list[str] = field(default_factory=list)
    owner_user_id: str = ""


@dataclass
class EmbeddingJob:
    """A tagged side effect. user_* kinds read `user`, project_* read `project`."""

    kind: EmbeddingJobKind
    max_attempts: int
    user: Optional[UserFacet] = None
    project: Optional[ProjectFacet] = None
    attempts: int = 0

    @property
    def entity_id(self) -> str:
        facet = self.user if self.kind.value.startswith("user_") else self.project
        return facet.id if facet else ""


@dataclass
class HubStats:
    """Runtime counters, exposed on the health route."""

    enqueued: int = 0
    processed: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0


# ─── Dispatch table ─────────────────────────────────────────


async def _user_create(client: EmbeddingClient, job: EmbeddingJob):
    u = job.user
    await client.create_user_embedding(u.id, u.bio, u.skills, u.interests)


async def _user_update(client: EmbeddingClient, job: EmbeddingJob):
    u = job.user
    await client.update_user_embedding(u.id, u.bio, u.skills, u.interests)


async def _user_status(client: EmbeddingClient, job: EmbeddingJob):
    await client.update_user_status(job.user.id, job.user.status)


async def _user_delete(client: EmbeddingClient, job: EmbeddingJob):
    await client.delete_user_embedding(job.user.id)


async def _project_create(client: EmbeddingClient, job: EmbeddingJob):
    p = job.project
    await client.create_project_embedding(
        p.id, p.title, p.description, p.skills, p.owner_user_id
    )


async def _project_update(client: EmbeddingClient, job: EmbeddingJob):
    p = job.project
    await client.update_project_embedding(p.id, p.title, p.description, p.skills)


async def _project_status(client: EmbeddingClient, job: EmbeddingJob):
    await client.update_project_status(job.project.id, job.project.status)


async def _project_delete(client: EmbeddingClient, job: EmbeddingJob):
    await client.delete_project_embedding(job.project.id)


_DISPATCH = {
    EmbeddingJobKind.USER_CREATE: _user_create,
    EmbeddingJobKind.USER_UPDATE: _user_update,
    EmbeddingJobKind.USER_STATUS: _user_status,
    EmbeddingJobKind.USER_DELETE: _user_delete,
    EmbeddingJobKind.PROJECT_CREATE: _project_create,
    EmbeddingJobKind.PROJECT_UPDATE: _project_update,
    EmbeddingJobKind.PROJECT_STATUS: _project_status,
    EmbeddingJobKind.PROJECT_DELETE: _project_delete,
}


# ─── Hub ────────────────────────────────────────────────────


class EmbeddingHub:
    """Bounded job queue + worker pool in front of the embedding service.

    Usage:
        hub = EmbeddingHub(queue_size=100, workers=10, rpc_address="emb:8000")
        hub.run()
        await hub.queue_user_create(user.id, user.bio, skills, interests)
        ...
        await hub.stop()
    """

    def __init__(
        self,
        queue_size: int,
        workers: int,
        rpc_address: str,
        *,
        retry_backoff_seconds: float = 3.0,
        call_timeout_seconds: float = 30.0,
        client_factory: Callable[..., EmbeddingClient] = EmbeddingClient,
    ):
        self.jobs: asyncio.Queue[EmbeddingJob] = asyncio.Queue(maxsize=queue_size)
        self.quit = asyncio.Event()
        self.worker_count = workers
        self.rpc_address = rpc_address
        self.retry_backoff_seconds = retry_backoff_seconds
        self.call_timeout_seconds = call_timeout_seconds
        self.stats = HubStats()
        self._client_factory = client_factory
        self._workers: list[asyncio.Task] = []
        self._retries: set[asyncio.Task] = set()

    # ─── Lifecycle ────────────────────────────────────────

    def run(self) -> None:
        """Start the worker pool. Must be called with a running event loop."""
        for i in range(self.worker_count):
            self._workers.append(
                asyncio.create_task(self._worker(i), name=f"embedding-worker-{i}")
            )
        logger.info(
            "embedding_hub.started",
            workers=self.worker_count,
            rpc_address=self.rpc_address,
        )

    async def stop(self) -> None:
        """Signal quit and wait for workers to finish their in-flight call.

        Jobs still queued are abandoned, as are pending retries. Workers are
        awaited first: a call that fails after quit schedules no retry, so
        once they exit the retry set can only shrink.
        """
        logger.info("embedding_hub.stopping", queued=self.jobs.qsize())
        self.quit.set()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        retries = list(self._retries)
        for task in retries:
            task.cancel()
        await asyncio.gather(*retries, return_exceptions=True)
        logger.info("embedding_hub.stopped", **asdict(self.stats))

    def snapshot(self) -> dict:
        return {
            "queued": self.jobs.qsize(),
            "workers": len(self._workers),
            **asdict(self.stats),
        }

    # ─── Producers ────────────────────────────────────────

    async def queue_user_create(
        self, user_id: str, bio: str, skills: Iterable[str], interests: Iterable[str]
    ) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.USER_CREATE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            user=UserFacet(
                id=user_id, bio=bio, skills=list(skills), interests=list(interests)
            ),
        ))

    async def queue_user_update(
        self, user_id: str, bio: str, skills: Iterable[str], interests: Iterable[str]
    ) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.USER_UPDATE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            user=UserFacet(
                id=user_id, bio=bio, skills=list(skills), interests=list(interests)
            ),
        ))

    async def queue_user_update_status(self, user_id: str, status: bool) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.USER_STATUS,
            max_attempts=STATUS_MAX_ATTEMPTS,
            user=UserFacet(id=user_id, status=status),
        ))

    async def queue_user_delete(self, user_id: str) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.USER_DELETE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            user=UserFacet(id=user_id),
        ))

    async def queue_project_create(
        self,
        project_id: str,
        title: str,
        description: str,
        owner_user_id: str,
        skills: Iterable[str],
    ) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.PROJECT_CREATE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            project=ProjectFacet(
                id=project_id,
                title=title,
                description=description,
                skills=list(skills),
                owner_user_id=owner_user_id,
            ),
        ))

    async def queue_project_update(
        self, project_id: str, title: str, description: str, skills: Iterable[str]
    ) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.PROJECT_UPDATE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            project=ProjectFacet(
                id=project_id, title=title, description=description, skills=list(skills)
            ),
        ))

    async def queue_project_update_status(self, project_id: str, status: bool) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.PROJECT_STATUS,
            max_attempts=STATUS_MAX_ATTEMPTS,
            project=ProjectFacet(id=project_id, status=status),
        ))

    async def queue_project_delete(self, project_id: str) -> None:
        await self._enqueue(EmbeddingJob(
            kind=EmbeddingJobKind.PROJECT_DELETE,
            max_attempts=DEFAULT_MAX_ATTEMPTS,
            project=ProjectFacet(id=project_id),
        ))

    async def _enqueue(self, job: EmbeddingJob) -> None:
        await self.jobs.put(job)
        self.stats.enqueued += 1

    # ─── Workers ──────────────────────────────────────────

    async def _worker(self, worker_id: int) -> None:
        """Drain the queue until quit is signalled.

        Learn: Each iteration races queue.get() against quit.wait(). If the
        quit signal wins, the pending get() is cancelled (asyncio.Queue
        hands the item to the next getter, nothing is lost) and the worker
        exits. A call already in flight always runs to completion or to
        its deadline.
        """
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
                await self._process(client, next_job.result(), log)
        finally:
            quit_wait.cancel()
            await client.close()
            log.debug("embedding_hub.worker_stopped")

    async def _process(self, client: EmbeddingClient, job: EmbeddingJob, log) -> None:
        log = log.bind(kind=job.kind.value, entity_id=job.entity_id)
        try:
            await _DISPATCH[job.kind](client, job)
        except Exception as e:
            await self._on_failure(client, job, e, log)
        else:
            self.stats.processed += 1
        finally:
            self.jobs.task_done()

    async def _on_failure(
        self, client: EmbeddingClient, job: EmbeddingJob, error: Exception, log
    ) -> None:
        self.stats.failed += 1
        job.attempts += 1

        if is_unavailable(error):
            try:
                await client.reconnect()
            except Exception as e:
                log.error("embedding.reconnect_failed", error=str(e))

        if self.quit.is_set():
            log.warning(
                "embedding.job_abandoned",
                attempts=job.attempts,
                error=str(error),
            )
        elif job.attempts <= job.max_attempts:
            delay = job.attempts * self.retry_backoff_seconds
            log.warning(
                "embedding.job_failed",
                attempts=job.attempts,
                retry_in=delay,
                error=str(error),
            )
            self._schedule_retry(job, delay)
        else:
            self.stats.dropped += 1
            log.error(
                "embedding.job_dropped",
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                error=str(error),
            )

    def _schedule_retry(self, job: EmbeddingJob, delay: float) -> None:
        task = asyncio.create_task(self._requeue(job, delay))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _requeue(self, job: EmbeddingJob, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.jobs.put(job)
        self.stats.retried += 1
