"""Health check endpoint.

Learn: Reports uptime, the number of open SSE streams (the hub's only
diagnostic), and whether the Redis relay is reachable.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from mealwatch import __version__
from mealwatch.api.events import get_hub
from mealwatch.realtime.hub import BroadcastHub

router = APIRouter()

_started = time.monotonic()


@router.get("/health")
async def health_check(request: Request, hub: BroadcastHub = Depends(get_hub)):
    """Check server health and relay connectivity."""
    checks = {
        "server": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started, 3),
        "sse_connections": hub.connection_count(),
    }

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        checks["relay"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["relay"] = "ok"
        except Exception as e:
            checks["relay"] = f"error: {e}"

    status = "degraded" if checks["relay"].startswith("error") else "healthy"
    return {"status": status, **checks}
