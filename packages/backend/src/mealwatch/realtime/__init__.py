"""Real-time infrastructure — SSE hub + optional Redis relay.

Learn: Events flow through up to two hops:
1. Handlers → publisher (Redis PUBLISH when a relay is configured)
2. Hub → one bounded queue per SSE connection → browser / client

The hub is the only piece that knows about connections; handlers only
ever see publish(topic, event_type, payload).
"""

from mealwatch.realtime.hub import BroadcastHub
from mealwatch.realtime.relay import LocalPublisher, Publisher, RedisRelay
from mealwatch.realtime.transport import QueueTransport, Transport, TransportClosed

__all__ = [
    "BroadcastHub",
    "LocalPublisher",
    "Publisher",
    "QueueTransport",
    "RedisRelay",
    "Transport",
    "TransportClosed",
]
