"""API route aggregation.

The CRUD surface lives in the account/posts services; this backend only
exposes health. All routers registered here get mounted in main.py.
"""

from fastapi import APIRouter

from findme.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
