"""Redis relay — carries broadcasts between processes.

Learn: An SSE connection lives in exactly one worker process, but the
upload that triggers an event may be handled by another. With a relay
configured, handlers publish to one Redis channel and every process runs
a listener that feeds the message into its local hub:

    handler → Redis PUBLISH → each process' relay → hub.broadcast → SSE

Redis pub/sub is fire-and-forget. If no process is listening, the event
is gone — the same at-most-once contract the hub already has. Without
Redis, LocalPublisher hands events straight to the in-process hub.
"""

import json
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
import structlog

from mealwatch.realtime.hub import BroadcastHub

logger = structlog.get_logger()

CHANNEL = "mealwatch:photo-events"


class Publisher(Protocol):
    """What a mutation handler uses to announce a persisted change."""

    async def publish(self, topic: Optional[str], event_type: str, payload: Any = None) -> None: ...


class LocalPublisher:
    """Publishes into this process' hub only."""

    def __init__(self, hub: BroadcastHub):
        self._hub = hub

    async def publish(self, topic: Optional[str], event_type: str, payload: Any = None) -> None:
        self._hub.broadcast(topic, event_type, payload)


def connect_redis(url: str) -> aioredis.Redis:
    """Build a Redis client for the relay (connects lazily)."""
    return aioredis.from_url(url, encoding="utf-8", decode_responses=True)


class RedisRelay:
    """Publisher + listener pair over a single Redis channel."""

    def __init__(
        self,
        redis: aioredis.Redis,
        hub: Optional[BroadcastHub] = None,
        channel: str = CHANNEL,
    ):
        self._redis = redis
        self._hub = hub
        self.channel = channel

    async def publish(self, topic: Optional[str], event_type: str, payload: Any = None) -> None:
        message = json.dumps(
            {"topic": topic, "type": event_type, "data": payload},
            default=str,
        )
        await self._redis.publish(self.channel, message)

    async def run(self) -> None:
        """Forward channel messages into the local hub until cancelled."""
        if self._hub is None:
            raise RuntimeError("RedisRelay.run() needs a hub to forward into")

        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("relay.subscribed", channel=self.channel)
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    self.forward(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def forward(self, raw: str | bytes) -> bool:
        """Broadcast one relay message locally. False if it was malformed."""
        if self._hub is None:
            raise RuntimeError("RedisRelay.forward() needs a hub to forward into")

        try:
            message = json.loads(raw)
            event_type = message["type"]
            topic = message.get("topic")
            if not isinstance(event_type, str):
                raise ValueError("'type' must be a string")
            if topic is not None and not isinstance(topic, str):
                raise ValueError("'topic' must be a string or null")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("relay.malformed_message", channel=self.channel, error=str(e))
            return False

        self._hub.broadcast(topic, event_type, message.get("data"))
        return True
