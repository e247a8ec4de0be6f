"""Health check endpoint.

Learn: Reports whether Postgres is reachable and what each hub is doing
(queue depth, worker count, counters). A hub that is not running (for
example when the app was built without its lifespan) shows as "stopped".
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from findme import __version__
from findme.db.engine import engine

router = APIRouter()

_HUBS = ("embedding_hub", "recommendation_hub", "chat_hub", "email_hub")


@router.get("/health")
async def health_check(request: Request):
    """Check server health, database connectivity and hub state."""
    checks = {"server": "ok", "version": __version__}

    # Check Postgres
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    hubs = {}
    for name in _HUBS:
        hub = getattr(request.app.state, name, None)
        hubs[name] = hub.snapshot() if hub is not None else "stopped"

    status = "healthy" if checks["postgres"] == "ok" and all(
        v != "stopped" for v in hubs.values()
    ) else "degraded"

    return {"status": status, **checks, "hubs": hubs}
