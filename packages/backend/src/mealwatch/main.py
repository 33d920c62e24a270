"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance with its own BroadcastHub on app.state. The hub is created in
the factory (not the lifespan) so it exists even when the ASGI server
skips lifespan events, as httpx's ASGITransport does in tests.
The lifespan manages the optional Redis relay and closes every stream on
shutdown so the server isn't held open by idle SSE connections.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mealwatch import __version__
from mealwatch.api import api_router
from mealwatch.config import settings
from mealwatch.logging_config import configure_logging
from mealwatch.realtime.hub import BroadcastHub
from mealwatch.realtime.relay import LocalPublisher, RedisRelay, connect_redis

logger = structlog.get_logger()


def _log_relay_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("mealwatch.relay_stopped", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "mealwatch.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    hub: BroadcastHub = app.state.hub
    relay_task = None

    if settings.relay_enabled:
        redis = connect_redis(settings.redis_url)
        try:
            await redis.ping()
        except Exception as e:
            logger.warning("mealwatch.redis_unavailable", error=str(e))
            # Redis is optional — events stay within this process
            await redis.aclose()
        else:
            relay = RedisRelay(redis, hub)
            app.state.redis = redis
            app.state.publisher = relay
            relay_task = asyncio.create_task(relay.run())
            relay_task.add_done_callback(_log_relay_exit)
            logger.info("mealwatch.redis_connected", channel=relay.channel)

    yield

    logger.info("mealwatch.shutdown", connections=hub.connection_count())

    # End every open stream
    hub.close_all()

    if relay_task is not None:
        relay_task.cancel()
        # A crash was already logged by _log_relay_exit
        await asyncio.gather(relay_task, return_exceptions=True)
        await app.state.redis.aclose()
        app.state.redis = None
        app.state.publisher = LocalPublisher(hub)


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging(settings.log_level, json_logs=settings.log_json)

    app = FastAPI(
        title="Mealwatch",
        description="Live photo updates for the school food-safety inspection portal",
        version=__version__,
        lifespan=lifespan,
    )

    hub = BroadcastHub()
    app.state.hub = hub
    app.state.redis = None
    app.state.publisher = LocalPublisher(hub)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Cache-Control"],
    )

    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: mealwatch.main:app)
app = create_app()
