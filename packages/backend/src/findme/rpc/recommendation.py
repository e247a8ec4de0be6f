"""Recommendation service client (rec.RecommendationService)."""

from findme.rpc.channel import ServiceChannel
from findme.rpc.messages import (
    RECOMMENDATION_SERVICE,
    RecommendationRequest,
    RecommendationResponse,
)


class RecommendationClient:
    """Async client over a single channel to the recommendation service.

    UserRecommendation ranks users for a project; ProjectRecommendation
    ranks projects for a user. Both trigger a recompute on the service
    side and return the ids it currently recommends.
    """

    def __init__(self, address: str, timeout: float = 30.0):
        self.channel = ServiceChannel(address, timeout=timeout)

    async def _recommend(self, method: str, entity_id: str) -> list[str]:
        response = await self.channel.call(
            f"/{RECOMMENDATION_SERVICE}/{method}",
            RecommendationRequest(id=entity_id),
            RecommendationResponse,
        )
        return list(response.ids)

    async def user_recommendation(self, project_id: str) -> list[str]:
        return await self._recommend("UserRecommendation", project_id)

    async def project_recommendation(self, user_id: str) -> list[str]:
        return await self._recommend("ProjectRecommendation", user_id)

    async def reconnect(self) -> None:
        await self.channel.reconnect()

    async def close(self) -> None:
        await self.channel.close()
