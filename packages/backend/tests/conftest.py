"""Test fixtures — a fresh app + hub per test, and a fake SSE server.

Learn: Two testing patterns:

1. Hub side: httpx's ASGITransport drives the real FastAPI app in-process.
   It collects the whole response body before returning, so stream tests
   close the hub (ending the stream) before awaiting the response.
2. Consumer side: httpx's MockTransport stands in for the network.
   FakeStreamServer hands out one streaming response per connection
   attempt; tests push frames into it, refuse connections, or break
   streams to drive the consumer's state machine.

FakeRedis covers the relay: it records publishes and replays scripted
pub/sub messages.
"""

import asyncio
from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio

from mealwatch.main import create_app

EVENTS_URL = "http://hub.test/api/photos/events"


@pytest.fixture()
def app():
    """A fresh application (and hub) per test."""
    return create_app()


@pytest.fixture()
def hub(app):
    return app.state.hub


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client wired straight into the ASGI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _wait_until(predicate: Callable[[], object], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within %.1fs" % timeout)
        await asyncio.sleep(0.005)


@pytest.fixture()
def wait_until():
    """Poll a condition on the event loop (fails the test on timeout)."""
    return _wait_until


class FakeStreamServer:
    """Scriptable SSE endpoint behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.attempt_times: list[float] = []
        self.streams: list[asyncio.Queue] = []
        # Per-attempt outcomes, consumed in order: "refuse", an HTTP status
        # code, or "stream". Once empty, `refuse_always` decides.
        self.script: list = []
        self.refuse_always = False
        # Frames every new stream starts with
        self.preload: list[str] = []

    @property
    def attempts(self) -> int:
        return len(self.attempt_times)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.attempt_times.append(asyncio.get_running_loop().time())

        if self.script:
            outcome = self.script.pop(0)
        else:
            outcome = "refuse" if self.refuse_always else "stream"

        if outcome == "refuse":
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(outcome, int):
            return httpx.Response(outcome, request=request)

        queue: asyncio.Queue = asyncio.Queue()
        for frame in self.preload:
            queue.put_nowait(frame)
        self.streams.append(queue)

        async def body():
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item.encode("utf-8")

        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            content=body(),
            request=request,
        )

    def send(self, text: str, stream: int = -1) -> None:
        self.streams[stream].put_nowait(text)

    def close(self, stream: int = -1) -> None:
        self.streams[stream].put_nowait(None)

    def fail(self, exc: Optional[Exception] = None, stream: int = -1) -> None:
        self.streams[stream].put_nowait(exc or httpx.ReadError("connection reset"))


@pytest.fixture()
def fake_server():
    return FakeStreamServer()


@pytest_asyncio.fixture()
async def http(fake_server):
    """AsyncClient whose every request is answered by fake_server."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_server.handle)) as c:
        yield c


class FakePubSub:
    """The slice of redis.asyncio.client.PubSub the relay uses."""

    def __init__(self, messages: list, block: bool):
        self.messages = messages
        self.block = block
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        self.subscribed.append(channel)

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribed.append(channel)

    async def listen(self):
        for message in self.messages:
            yield message
        if self.block:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []
        self.incoming: list[dict] = []
        self.block_listen = False
        self.ping_error: Optional[Exception] = None
        self.closed = False
        self.last_pubsub: Optional[FakePubSub] = None

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    def pubsub(self) -> FakePubSub:
        self.last_pubsub = FakePubSub(list(self.incoming), self.block_listen)
        return self.last_pubsub

    async def ping(self) -> bool:
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_redis():
    return FakeRedis()
