"""Per-connection transport — a bounded, non-blocking frame buffer.

Learn: The hub must never wait on a slow client. Each SSE connection gets
its own queue; the hub writes with put_nowait and the HTTP response
drains the queue at whatever pace the socket allows. A client that falls
``maxsize`` frames behind is treated as dead: the write raises and the
hub evicts it. Its stream then ends and the client reconnects.
"""

import asyncio
from typing import AsyncIterator, Optional, Protocol

from mealwatch.events.frames import KEEPALIVE_FRAME


class TransportClosed(Exception):
    """Raised when writing to a closed (or hopelessly backed-up) transport."""


class Transport(Protocol):
    """What the hub needs from a connection's underlying channel."""

    @property
    def closed(self) -> bool: ...

    def write(self, frame: str) -> None: ...

    def close(self) -> None: ...


class QueueTransport:
    """Transport backed by an asyncio.Queue, streamed by the SSE endpoint."""

    def __init__(self, maxsize: int = 100):
        # The queue itself is unbounded so close() can always enqueue the
        # end-of-stream marker; maxsize is enforced in write().
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._maxsize = maxsize
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def write(self, frame: str) -> None:
        if self._closed:
            raise TransportClosed("transport is closed")
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            raise TransportClosed(f"send buffer full ({self._maxsize} frames pending)")
        self._queue.put_nowait(frame)

    def close(self) -> None:
        """Stop accepting frames; the stream ends once queued frames drain."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self, keepalive: Optional[float] = None) -> AsyncIterator[str]:
        """Yield queued frames until closed.

        When nothing arrives for ``keepalive`` seconds, yield an SSE
        comment instead. Writing it is what makes a dead socket surface
        as an error at the ASGI server.
        """
        timeout = keepalive if keepalive and keepalive > 0 else None
        while True:
            try:
                frame = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            if frame is None:
                return
            yield frame
