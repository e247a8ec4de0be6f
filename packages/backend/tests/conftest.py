"""Test fixtures — in-memory fakes for everything the hubs talk to.

Learn: None of these tests need the ML services, Postgres or a browser:

1. RpcRecorder stands in for both gRPC services. Hubs build clients
   through their client_factory, so every worker gets a fake client that
   appends to the same recorder. The recorder can fail the first N calls
   and can hold calls open on a gate to simulate a slow service.
2. FakeConnection mimics starlette's WebSocket: inbound frames come from
   a queue, outbound frames land in a list, close() wakes the reader the
   way a real socket close does.
3. `eventually` polls a condition, so tests assert on outcomes instead of
   sleeping for fixed amounts of time.
"""

import asyncio
from typing import Callable, Optional

import pytest
from starlette.websockets import WebSocketDisconnect


# ─── gRPC fakes ─────────────────────────────────────────────


class RpcRecorder:
    """Shared call log for every fake client a hub creates."""

    def __init__(
        self,
        fail_first: int = 0,
        error_factory: Callable[[], Exception] = lambda: RuntimeError("rpc failed"),
        gate: Optional[asyncio.Event] = None,
        response_ids: Optional[list[str]] = None,
        reconnect_error: Optional[Exception] = None,
    ):
        self.calls: list[tuple[str, tuple]] = []
        self.times: list[float] = []
        self.fail_first = fail_first
        self.error_factory = error_factory
        self.gate = gate
        self.response_ids = response_ids or []
        self.completed = 0
        self.clients_created = 0
        self.clients_closed = 0
        self.reconnects = 0
        self.reconnect_error = reconnect_error

    async def record(self, method: str, *args):
        self.calls.append((method, args))
        self.times.append(asyncio.get_running_loop().time())
        attempt = len(self.calls)
        if self.gate is not None:
            await self.gate.wait()
        if attempt <= self.fail_first:
            raise self.error_factory()
        self.completed += 1

    def embedding_factory(self):
        def factory(address, timeout=30.0):
            self.clients_created += 1
            return FakeEmbeddingClient(self)
        return factory

    def recommendation_factory(self):
        def factory(address, timeout=30.0):
            self.clients_created += 1
            return FakeRecommendationClient(self)
        return factory


class _FakeClient:
    def __init__(self, recorder: RpcRecorder):
        self.recorder = recorder

    async def reconnect(self):
        self.recorder.reconnects += 1
        if self.recorder.reconnect_error is not None:
            raise self.recorder.reconnect_error

    async def close(self):
        self.recorder.clients_closed += 1


class FakeEmbeddingClient(_FakeClient):
    async def create_user_embedding(self, user_id, bio, skills, interests):
        await self.recorder.record(
            "CreateUserEmbedding", user_id, bio, list(skills), list(interests)
        )

    async def update_user_embedding(self, user_id, bio, skills, interests):
        await self.recorder.record(
            "UpdateUserEmbedding", user_id, bio, list(skills), list(interests)
        )

    async def update_user_status(self, user_id, status):
        await self.recorder.record("UpdateUserStatus", user_id, status)

    async def delete_user_embedding(self, user_id):
        await self.recorder.record("DeleteUserEmbedding", user_id)

    async def create_project_embedding(self, project_id, title, description, skills, user_id):
        await self.recorder.record(
            "CreateProjectEmbedding", project_id, title, description, list(skills), user_id
        )

    async def update_project_embedding(self, project_id, title, description, skills):
        await self.recorder.record(
            "UpdateProjectEmbedding", project_id, title, description, list(skills)
        )

    async def update_project_status(self, project_id, status):
        await self.recorder.record("UpdateProjectStatus", project_id, status)

    async def delete_project_embedding(self, project_id):
        await self.recorder.record("DeleteProjectEmbedding", project_id)


class FakeRecommendationClient(_FakeClient):
    async def user_recommendation(self, project_id):
        await self.recorder.record("UserRecommendation", project_id)
        return list(self.recorder.response_ids)

    async def project_recommendation(self, user_id):
        await self.recorder.record("ProjectRecommendation", user_id)
        return list(self.recorder.response_ids)


# ─── WebSocket fake ─────────────────────────────────────────


class FakeConnection:
    """Starlette-WebSocket lookalike driven from the test."""

    def __init__(self, frames=(), fail_writes: bool = False):
        self.inbound: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.inbound.put_nowait(frame)
        self.sent: list[dict] = []
        self.fail_writes = fail_writes
        self.close_calls = 0

    async def receive_json(self):
        item = await self.inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def send_json(self, data):
        if self.fail_writes:
            raise RuntimeError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000):
        self.close_calls += 1
        self.inbound.put_nowait(WebSocketDisconnect(code))

    def disconnect(self, code: int = 1000):
        self.inbound.put_nowait(WebSocketDisconnect(code))


# ─── Fixtures ───────────────────────────────────────────────


async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.002)


@pytest.fixture
def eventually():
    return _eventually


@pytest.fixture
def recorder():
    return RpcRecorder()


@pytest.fixture
def connection_factory():
    return FakeConnection


@pytest.fixture
def recorder_factory():
    return RpcRecorder
