"""Subscriber registry — topic → callbacks, and dispatch.

Learn: One stream carries every school's events. The registry decides
who hears what:
- callbacks subscribed to "school-42" hear events for school-42 only
- callbacks subscribed to WILDCARD_TOPIC hear everything

A callback is registered at most once per topic. Each registration gets
a token and the Unsubscribe handle only removes its own token, so calling
it twice — or calling a stale handle after the callback re-subscribed —
does nothing.
"""

import itertools
from typing import Any, Callable, Optional

import structlog

from mealwatch.events.types import WILDCARD_TOPIC

logger = structlog.get_logger()

# (event_type, topic, payload)
Callback = Callable[[str, Optional[str], Any], None]


class Unsubscribe:
    """Idempotent handle returned by subscribe()."""

    def __init__(self, registry: "SubscriberRegistry", topic: str, callback: Callback, token: int):
        self._registry = registry
        self.topic = topic
        self._callback = callback
        self._token = token

    @property
    def active(self) -> bool:
        return self._registry._token_for(self.topic, self._callback) == self._token

    def __call__(self) -> None:
        self._registry._remove(self.topic, self._callback, self._token)


class SubscriberRegistry:
    """Topic-keyed callback sets with exception-isolated dispatch."""

    def __init__(self) -> None:
        self._topics: dict[str, dict[Callback, int]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, topic: str, callback: Callback) -> Unsubscribe:
        """Add callback to topic's set; returns its unsubscribe handle."""
        callbacks = self._topics.setdefault(topic, {})
        token = callbacks.get(callback)
        if token is None:
            token = next(self._tokens)
            callbacks[callback] = token
        return Unsubscribe(self, topic, callback, token)

    def subscribe_all(self, callback: Callback) -> Unsubscribe:
        return self.subscribe(WILDCARD_TOPIC, callback)

    def dispatch(self, event_type: str, topic: Optional[str], payload: Any) -> int:
        """Invoke exact-topic callbacks, then wildcard callbacks.

        A callback that raises is logged and skipped; the rest still run.
        Returns the number of callbacks invoked.
        """
        targets: list[tuple[Callback, bool]] = []
        if topic is not None and topic != WILDCARD_TOPIC:
            targets.extend((cb, False) for cb in self._topics.get(topic, ()))
        targets.extend((cb, True) for cb in self._topics.get(WILDCARD_TOPIC, ()))

        for callback, wildcard in targets:
            try:
                callback(event_type, topic, payload)
            except Exception:
                logger.exception(
                    "sse.listener_failed",
                    event_type=event_type,
                    topic=topic,
                    wildcard=wildcard,
                )
        return len(targets)

    def topics(self) -> list[str]:
        return list(self._topics)

    def count(self, topic: Optional[str] = None) -> int:
        """Subscriptions for one topic, or across all topics."""
        if topic is not None:
            return len(self._topics.get(topic, ()))
        return sum(len(callbacks) for callbacks in self._topics.values())

    def clear(self) -> None:
        self._topics.clear()

    # ─── Handle support ───────────────────────────────────

    def _token_for(self, topic: str, callback: Callback) -> Optional[int]:
        return self._topics.get(topic, {}).get(callback)

    def _remove(self, topic: str, callback: Callback, token: int) -> None:
        callbacks = self._topics.get(topic)
        if not callbacks or callbacks.get(callback) != token:
            return
        del callbacks[callback]
        if not callbacks:
            del self._topics[topic]
