"""Stream consumer — one shared SSE connection with reconnect + backoff.

Learn: A process builds ONE StreamConsumer at startup and hands it to
whatever needs live updates. Every subscriber shares its single stream;
subscribing calls connect(), which is a no-op once a stream is open.

State machine:

    disconnected ──connect()──▶ connecting ──200 OK──▶ connected
         ▲                          │                     │
         │                      failure            error / stream end
    disconnect()                    ▼                     ▼
         │                    reconnecting ◀──────────────┘
         │                 (timer: delay * 2^(n-1))
         │                          │
         └──── gave_up ◀── attempts exhausted (no more automatic retries)

The reconnect timer is a loop.call_later handle, so disconnect() can
cancel it. Nothing here ever raises into subscriber callbacks or into
the code that called subscribe(): being offline is visible only through
get_connection_status().
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from mealwatch.client.registry import Callback, SubscriberRegistry, Unsubscribe
from mealwatch.events.frames import Event, FrameDecodeError, FrameDecoder, decode_frame
from mealwatch.events.types import TRANSPORT_EVENTS, EventType

logger = structlog.get_logger()

EVENTS_PATH = "/api/photos/events"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    GAVE_UP = "gave_up"


@dataclass
class ConsumerConfig:
    """Configuration for the stream consumer."""

    url: str = f"http://localhost:5010{EVENTS_PATH}"
    reconnect_delay: float = 1.0  # seconds — base of the exponential backoff
    max_reconnect_attempts: int = 5
    connect_timeout: float = 10.0
    read_timeout: Optional[float] = 60.0  # > server keepalive interval

    @classmethod
    def for_api(cls, api_url: str, **kwargs: Any) -> "ConsumerConfig":
        """Config pointing at the events endpoint of an API base URL."""
        base = api_url.rstrip("/")
        if base.endswith("/api"):
            base = base[: -len("/api")]
        return cls(url=f"{base}{EVENTS_PATH}", **kwargs)


@dataclass(frozen=True)
class ConnectionStatus:
    state: ConnectionState
    is_connected: bool
    is_connecting: bool
    reconnect_attempts: int
    client_id: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "isConnected": self.is_connected,
            "isConnecting": self.is_connecting,
            "reconnectAttempts": self.reconnect_attempts,
            "state": self.state.value,
            "clientId": self.client_id,
        }


class StreamConsumer:
    """Shared SSE connection + subscriber registry."""

    def __init__(
        self,
        config: Optional[ConsumerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        registry: Optional[SubscriberRegistry] = None,
    ):
        self.config = config or ConsumerConfig()
        self.registry = registry or SubscriberRegistry()
        self._client = client
        self._owns_client = client is None

        self.state = ConnectionState.DISCONNECTED
        self.is_connected = False
        self.reconnect_attempts = 0
        self.reconnect_delay = self.config.reconnect_delay
        self.client_id: Optional[str] = None

        self._task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    # ─── Public surface ───────────────────────────────────

    def subscribe(self, topic: str, callback: Callback) -> Unsubscribe:
        """Listen for events about one school. Opens the stream if needed."""
        unsubscribe = self.registry.subscribe(topic, callback)
        self.connect()
        return unsubscribe

    def subscribe_all(self, callback: Callback) -> Unsubscribe:
        """Listen for every event (dashboards, admin views)."""
        unsubscribe = self.registry.subscribe_all(callback)
        self.connect()
        return unsubscribe

    def get_connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self.state,
            is_connected=self.is_connected,
            is_connecting=self.state == ConnectionState.CONNECTING,
            reconnect_attempts=self.reconnect_attempts,
            client_id=self.client_id,
        )

    def connect(self) -> None:
        """Open the stream unless one is already open or opening.

        Must be called with a running event loop. From RECONNECTING it
        connects immediately instead of waiting for the timer.
        """
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("sse.connect_skipped", state=self.state.value)
            return

        self._cancel_timer()
        self.state = ConnectionState.CONNECTING
        logger.info("sse.connecting", url=self.config.url, attempt=self.reconnect_attempts)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def disconnect(self) -> None:
        """Tear down: cancel any pending reconnect, close the stream, drop subscribers."""
        self._cancel_timer()

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                await asyncio.gather(task, return_exceptions=True)

        self.registry.clear()
        self.state = ConnectionState.DISCONNECTED
        self.is_connected = False
        self.client_id = None
        logger.info("sse.disconnected")

    async def aclose(self) -> None:
        """disconnect() and close the HTTP client if we created it."""
        await self.disconnect()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ─── Stream handling ──────────────────────────────────

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = httpx.Timeout(
                self.config.connect_timeout,
                read=self.config.read_timeout,
            )
            self._client = httpx.AsyncClient(timeout=timeout)
        return self._client

    async def _run(self) -> None:
        """One connection attempt, from open to close."""
        try:
            await self._stream()
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.warning(
                "sse.transport_error",
                error=str(e) or type(e).__name__,
                state=self.state.value,
            )
        except Exception:
            # e.g. httpx.InvalidURL; still a failed attempt
            logger.exception("sse.stream_failed", url=self.config.url, state=self.state.value)
        else:
            logger.info("sse.stream_closed")

        self._task = None
        self._on_closed()

    async def _stream(self) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        async with self._http().stream("GET", self.config.url, headers=headers) as response:
            response.raise_for_status()
            self._on_open()

            decoder = FrameDecoder()
            async for line in response.aiter_lines():
                data = decoder.feed(line)
                if data is not None:
                    self._handle_frame(data)

    def _on_open(self) -> None:
        self.state = ConnectionState.CONNECTED
        self.is_connected = True
        self.reconnect_attempts = 0
        self.reconnect_delay = self.config.reconnect_delay
        logger.info("sse.connected", url=self.config.url)

    def _handle_frame(self, data: str) -> None:
        try:
            frame = decode_frame(data)
        except FrameDecodeError as e:
            logger.warning("sse.malformed_frame", error=str(e), raw=data[:200])
            return

        event = Event.from_frame(frame)
        kind = event.kind
        if kind is EventType.CONNECTED:
            self.client_id = frame.client_id
            logger.info("sse.client_registered", client_id=frame.client_id)
        elif kind.is_photo_event:
            logger.debug("sse.event", event_type=event.event_type, topic=event.topic)
            self.registry.dispatch(event.event_type, event.topic, event.payload)
        elif kind in TRANSPORT_EVENTS:
            pass
        else:
            logger.info("sse.unknown_event", event_type=event.event_type)

    # ─── Reconnect policy ─────────────────────────────────

    def _on_closed(self) -> None:
        self.is_connected = False

        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            self.state = ConnectionState.GAVE_UP
            logger.error(
                "sse.reconnect_exhausted",
                attempts=self.reconnect_attempts,
                url=self.config.url,
            )
            return

        self.reconnect_attempts += 1
        delay = self.reconnect_delay * 2 ** (self.reconnect_attempts - 1)
        self.state = ConnectionState.RECONNECTING
        logger.info(
            "sse.reconnect_scheduled",
            attempt=self.reconnect_attempts,
            max_attempts=self.config.max_reconnect_attempts,
            delay=delay,
        )
        self._timer = asyncio.get_running_loop().call_later(delay, self._reconnect)

    def _reconnect(self) -> None:
        self._timer = None
        if self.state is ConnectionState.RECONNECTING:
            self.connect()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
