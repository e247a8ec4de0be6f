"""Health endpoint and request-ID middleware tests.

Learn: The app's lifespan is entered explicitly so the hubs exist on
app.state; httpx's ASGITransport does not run lifespan events itself.
Postgres is not required: without it the route still answers, with
status "degraded".
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from findme.config import settings
from findme.main import create_app


@pytest_asyncio.fixture()
async def client():
    app = create_app()
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


@pytest.mark.asyncio
async def test_health_reports_every_hub(client):
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    data = r.json()
    assert data["server"] == "ok"
    assert "version" in data
    assert "postgres" in data
    assert set(data["hubs"]) == {"embedding_hub", "recommendation_hub", "chat_hub", "email_hub"}
    assert data["hubs"]["embedding_hub"]["workers"] == settings.embedding.workers
    assert data["hubs"]["recommendation_hub"]["queued"] == 0
    assert data["hubs"]["chat_hub"]["rooms"] == 0


@pytest.mark.asyncio
async def test_health_without_lifespan_shows_stopped_hubs():
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.get("/api/v1/health")

    data = r.json()
    assert data["status"] == "degraded"
    assert data["hubs"]["chat_hub"] == "stopped"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/api/v1/health")
    r2 = await client.get("/api/v1/health")
    assert "X-Request-ID" in r1.headers
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    """Incoming X-Request-ID is echoed on the response."""
    r = await client.get("/api/v1/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"
