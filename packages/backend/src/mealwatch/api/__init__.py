"""API route aggregation.

All routers registered here get mounted in main.py under /api, matching
the paths the portal's galleries already use (/api/photos/events).
Authentication is handled by the portal in front of us, not here.
"""

from fastapi import APIRouter

from mealwatch.api.events import router as events_router
from mealwatch.api.health import router as health_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(events_router, tags=["events"])
