"""Client side of the photo event stream.

Build one StreamConsumer per process and pass it to whatever needs live
updates; use LiveFeed where a mount/unmount lifetime fits better than
managing unsubscribe handles by hand.
"""

from mealwatch.client.consumer import (
    ConnectionState,
    ConnectionStatus,
    ConsumerConfig,
    StreamConsumer,
)
from mealwatch.client.live import LiveFeed, LiveUpdate
from mealwatch.client.registry import SubscriberRegistry, Unsubscribe

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "ConsumerConfig",
    "LiveFeed",
    "LiveUpdate",
    "StreamConsumer",
    "SubscriberRegistry",
    "Unsubscribe",
]
