"""LiveFeed — a mount/unmount wrapper around StreamConsumer subscriptions.

Learn: UI code thinks in lifetimes ("while this gallery is on screen"),
not in subscribe/unsubscribe pairs. LiveFeed is an async context manager
whose lifetime is exactly one subscription:

    async with LiveFeed(consumer, "school-42") as feed:
        async for update in feed:
            redraw(update)

Entering subscribes once, leaving unsubscribes exactly once, and entering
a feed that is already mounted is an error — so a remount can never leak
a second subscription.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from mealwatch.client.consumer import ConnectionStatus, StreamConsumer
from mealwatch.client.registry import Unsubscribe


@dataclass(frozen=True)
class LiveUpdate:
    """The most recent event a feed received."""

    event_type: str
    topic: Optional[str]
    payload: Any
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LiveFeed:
    """Latest-event state for one topic (or everything when topic is None)."""

    def __init__(self, consumer: StreamConsumer, topic: Optional[str] = None):
        self._consumer = consumer
        self.topic = topic
        self.last_update: Optional[LiveUpdate] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._updates: Optional[asyncio.Queue[Optional[LiveUpdate]]] = None

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._consumer.get_connection_status()

    @property
    def is_connected(self) -> bool:
        return self._consumer.is_connected

    # ─── Lifetime ─────────────────────────────────────────

    async def __aenter__(self) -> "LiveFeed":
        self.mount()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.unmount()

    def mount(self) -> None:
        if self._unsubscribe is not None:
            raise RuntimeError("LiveFeed is already mounted")
        self._updates = asyncio.Queue()
        if self.topic is None:
            self._unsubscribe = self._consumer.subscribe_all(self._on_event)
        else:
            self._unsubscribe = self._consumer.subscribe(self.topic, self._on_event)

    def unmount(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is None:
            return
        unsubscribe()
        if self._updates is not None:
            self._updates.put_nowait(None)

    # ─── Updates ──────────────────────────────────────────

    def _on_event(self, event_type: str, topic: Optional[str], payload: Any) -> None:
        update = LiveUpdate(event_type=event_type, topic=topic, payload=payload)
        self.last_update = update
        if self._updates is not None:
            self._updates.put_nowait(update)

    async def __aiter__(self) -> AsyncIterator[LiveUpdate]:
        """Updates received while mounted; ends when the feed unmounts."""
        if self._updates is None:
            raise RuntimeError("LiveFeed must be mounted before iterating")
        updates = self._updates
        while True:
            update = await updates.get()
            if update is None:
                return
            yield update
