"""LiveFeed tests — one subscription per mount, updates while mounted."""

import asyncio

import pytest

from mealwatch.client.consumer import ConsumerConfig, StreamConsumer
from mealwatch.client.live import LiveFeed
from mealwatch.client.registry import SubscriberRegistry
from mealwatch.events.frames import Event, encode_event


class SpyConsumer:
    """Just enough of StreamConsumer to count (un)subscriptions."""

    def __init__(self):
        self.registry = SubscriberRegistry()
        self.is_connected = False
        self.subscribe_calls: list = []
        self.unsubscribe_calls = 0

    def _track(self, handle):
        spy = self

        def unsubscribe():
            spy.unsubscribe_calls += 1
            handle()

        return unsubscribe

    def subscribe(self, topic, callback):
        self.subscribe_calls.append(topic)
        return self._track(self.registry.subscribe(topic, callback))

    def subscribe_all(self, callback):
        self.subscribe_calls.append("*")
        return self._track(self.registry.subscribe_all(callback))

    def get_connection_status(self):
        return "status"

    def emit(self, event_type, topic, payload=None):
        self.registry.dispatch(event_type, topic, payload)


@pytest.mark.asyncio
async def test_mount_subscribes_once_and_unmount_unsubscribes_once():
    consumer = SpyConsumer()
    feed = LiveFeed(consumer, "school-42")

    async with feed:
        assert feed.mounted
        assert consumer.subscribe_calls == ["school-42"]
        assert consumer.registry.count("school-42") == 1

    assert not feed.mounted
    assert consumer.unsubscribe_calls == 1
    assert consumer.registry.count() == 0

    # Unmounting again is a no-op
    feed.unmount()
    assert consumer.unsubscribe_calls == 1


@pytest.mark.asyncio
async def test_double_mount_is_rejected():
    consumer = SpyConsumer()
    feed = LiveFeed(consumer, "school-42")
    feed.mount()

    with pytest.raises(RuntimeError, match="already mounted"):
        feed.mount()

    assert consumer.subscribe_calls == ["school-42"]
    feed.unmount()


@pytest.mark.asyncio
async def test_remount_creates_a_fresh_subscription():
    consumer = SpyConsumer()
    feed = LiveFeed(consumer, "school-42")

    for _ in range(3):
        async with feed:
            assert consumer.registry.count() == 1

    assert consumer.subscribe_calls == ["school-42"] * 3
    assert consumer.unsubscribe_calls == 3


@pytest.mark.asyncio
async def test_last_update_tracks_the_topic():
    consumer = SpyConsumer()

    async with LiveFeed(consumer, "school-42") as feed:
        assert feed.last_update is None
        consumer.emit("photo_added", "school-42", {"id": "p1"})
        consumer.emit("photo_added", "school-7", {"id": "other"})
        consumer.emit("photo_deleted", "school-42", {"photoId": "p1"})

        assert feed.last_update.event_type == "photo_deleted"
        assert feed.last_update.payload == {"photoId": "p1"}
        assert feed.connection_status == "status"
        assert feed.is_connected is False

    # Events after unmount don't touch the feed
    consumer.emit("photo_added", "school-42", {"id": "late"})
    assert feed.last_update.event_type == "photo_deleted"


@pytest.mark.asyncio
async def test_iteration_yields_updates_and_ends_on_unmount():
    consumer = SpyConsumer()
    feed = LiveFeed(consumer)
    received = []

    async def read():
        async for update in feed:
            received.append((update.event_type, update.topic))

    async with feed:
        assert consumer.subscribe_calls == ["*"]
        reader = asyncio.create_task(read())
        consumer.emit("warden_photo_added", "school-1", {"id": "w1"})
        consumer.emit("photos_refreshed", "school-2", {})
        await asyncio.sleep(0)

    await asyncio.wait_for(reader, 1)
    assert received == [("warden_photo_added", "school-1"), ("photos_refreshed", "school-2")]


@pytest.mark.asyncio
async def test_iterating_an_unmounted_feed_fails():
    feed = LiveFeed(SpyConsumer(), "school-1")
    with pytest.raises(RuntimeError, match="mounted"):
        async for _ in feed:
            pass


@pytest.mark.asyncio
async def test_feed_over_a_real_stream(fake_server, http, wait_until):
    consumer = StreamConsumer(ConsumerConfig(url="http://hub.test/api/photos/events"), client=http)
    try:
        async with LiveFeed(consumer, "school-42") as feed:
            await wait_until(lambda: feed.is_connected)
            fake_server.send(encode_event(Event("photo_added", "school-42", {"id": "p1"})))
            await wait_until(lambda: feed.last_update is not None)

            assert feed.last_update.payload == {"id": "p1"}
            assert feed.connection_status.is_connected

        assert consumer.registry.count() == 0
        # Unmounting leaves the shared stream open for other feeds
        assert consumer.is_connected
    finally:
        await consumer.disconnect()
