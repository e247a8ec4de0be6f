"""Embedding service client.

One method per RPC of emb.UserEmbeddingService and
emb.ProjectEmbeddingService. Each call raises grpc.RpcError on failure
(including DEADLINE_EXCEEDED after the per-call timeout).
"""

from typing import Iterable

from findme.rpc.channel import ServiceChannel
from findme.rpc.messages import (
    PROJECT_EMBEDDING_SERVICE,
    USER_EMBEDDING_SERVICE,
    DeleteEmbeddingRequest,
    EmbeddingResponse,
    ProjectEmbeddingRequest,
    UpdateStatusRequest,
    UserEmbeddingRequest,
)


class EmbeddingClient:
    """Async client over a single channel to the embedding service."""

    def __init__(self, address: str, timeout: float = 30.0):
        self.channel = ServiceChannel(address, timeout=timeout)

    async def _user(self, method: str, request):
        return await self.channel.call(
            f"/{USER_EMBEDDING_SERVICE}/{method}", request, EmbeddingResponse
        )

    async def _project(self, method: str, request):
        return await self.channel.call(
            f"/{PROJECT_EMBEDDING_SERVICE}/{method}", request, EmbeddingResponse
        )

    # ─── Users ────────────────────────────────────────────

    async def create_user_embedding(
        self, user_id: str, bio: str, skills: Iterable[str], interests: Iterable[str]
    ):
        return await self._user(
            "CreateUserEmbedding",
            UserEmbeddingRequest(
                user_id=user_id, bio=bio, skills=list(skills), interests=list(interests)
            ),
        )

    async def update_user_embedding(
        self, user_id: str, bio: str, skills: Iterable[str], interests: Iterable[str]
    ):
        return await self._user(
            "UpdateUserEmbedding",
            UserEmbeddingRequest(
                user_id=user_id, bio=bio, skills=list(skills), interests=list(interests)
            ),
        )

    async def update_user_status(self, user_id: str, status: bool):
        return await self._user(
            "UpdateUserStatus", UpdateStatusRequest(id=user_id, status=status)
        )

    async def delete_user_embedding(self, user_id: str):
        return await self._user(
            "DeleteUserEmbedding", DeleteEmbeddingRequest(id=user_id)
        )

    # ─── Projects ─────────────────────────────────────────

    async def create_project_embedding(
        self,
        project_id: str,
        title: str,
        description: str,
        skills: Iterable[str],
        user_id: str,
    ):
        return await self._project(
            "CreateProjectEmbedding",
            ProjectEmbeddingRequest(
                project_id=project_id,
                title=title,
                description=description,
                skills=list(skills),
                user_id=user_id,
            ),
        )

    async def update_project_embedding(
        self, project_id: str, title: str, description: str, skills: Iterable[str]
    ):
        return await self._project(
            "UpdateProjectEmbedding",
            ProjectEmbeddingRequest(
                project_id=project_id,
                title=title,
                description=description,
                skills=list(skills),
            ),
        )

    async def update_project_status(self, project_id: str, status: bool):
        return await self._project(
            "UpdateProjectStatus", UpdateStatusRequest(id=project_id, status=status)
        )

    async def delete_project_embedding(self, project_id: str):
        return await self._project(
            "DeleteProjectEmbedding", DeleteEmbeddingRequest(id=project_id)
        )

    # ─── Lifecycle ────────────────────────────────────────

    async def reconnect(self) -> None:
        await self.channel.reconnect()

    async def close(self) -> None:
        await self.channel.close()
