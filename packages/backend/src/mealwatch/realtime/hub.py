"""Broadcast hub — fans photo events out to every open SSE connection.

Learn: The hub owns a registry of connection id → transport. Mutation
handlers call broadcast() after their write has been persisted; the hub
encodes the event once and writes it to every registered connection.

Delivery is fire-and-forget and at-most-once:
- no acknowledgement, retry or replay
- a client that was disconnected when an event fired never sees it
- a write that fails evicts that connection, and only that connection

Everything runs on one event loop, so the registry needs no lock.
Code running in a worker thread (sync FastAPI handlers) must use
broadcast_threadsafe(), which hops onto the hub's loop first.
"""

import asyncio
import secrets
import time
from typing import Any, Optional

import structlog

from mealwatch.events.frames import Event, encode_connected, encode_event
from mealwatch.realtime.transport import Transport

logger = structlog.get_logger()


def _new_client_id() -> str:
    """Epoch milliseconds plus random hex — unique, not unguessable."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


class BroadcastHub:
    """Registry of open streaming connections + fan-out."""

    def __init__(self) -> None:
        self._connections: dict[str, Transport] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ─── Connection lifecycle ─────────────────────────────

    def accept_connection(self, transport: Transport) -> str:
        """Register a transport and send it the handshake frame.

        The handshake goes to this connection only and carries its own id.
        If it can't be written the connection is dropped straight away;
        the caller still gets the id and its stream simply ends.
        """
        self._bind_loop()

        client_id = _new_client_id()
        while client_id in self._connections:
            client_id = _new_client_id()

        self._connections[client_id] = transport
        try:
            transport.write(encode_connected(client_id))
        except Exception as e:
            logger.warning("sse.handshake_failed", client_id=client_id, error=str(e))
            self.remove(client_id)
            return client_id

        logger.info(
            "sse.client_connected",
            client_id=client_id,
            connections=len(self._connections),
        )
        return client_id

    def remove(self, client_id: str) -> bool:
        """Drop a connection and close its transport.

        Safe to call more than once — both the disconnect and the error
        cleanup paths end up here. Returns False if it was already gone.
        """
        transport = self._connections.pop(client_id, None)
        if transport is None:
            return False

        try:
            transport.close()
        except Exception as e:
            logger.debug("sse.transport_close_failed", client_id=client_id, error=str(e))

        logger.info(
            "sse.client_disconnected",
            client_id=client_id,
            connections=len(self._connections),
        )
        return True

    def close_all(self) -> None:
        """Close every connection (shutdown), letting streaming responses end."""
        client_ids = list(self._connections)
        for client_id in client_ids:
            self.remove(client_id)
        if client_ids:
            logger.info("sse.hub_closed", closed=len(client_ids))

    def connection_count(self) -> int:
        return len(self._connections)

    def client_ids(self) -> list[str]:
        return list(self._connections)

    # ─── Fan-out ──────────────────────────────────────────

    def broadcast(self, topic: Optional[str], event_type: str, payload: Any = None) -> int:
        """Write one event to every registered connection.

        Never raises for delivery problems: a failing connection is logged
        and evicted and the loop moves on to the next one. Returns how many
        connections accepted the frame.
        """
        event = Event(event_type=event_type, topic=topic, payload=payload)
        frame = encode_event(event)

        delivered = 0
        for client_id, transport in list(self._connections.items()):
            if client_id not in self._connections:
                continue
            try:
                transport.write(frame)
            except Exception as e:
                logger.warning(
                    "sse.write_failed",
                    client_id=client_id,
                    event_type=event_type,
                    error=str(e),
                )
                self.remove(client_id)
            else:
                delivered += 1

        logger.debug(
            "sse.broadcast",
            event_type=event_type,
            topic=topic,
            delivered=delivered,
        )
        return delivered

    def broadcast_threadsafe(
        self, topic: Optional[str], event_type: str, payload: Any = None
    ) -> None:
        """broadcast() callable from any thread.

        Learn: asyncio queues aren't thread-safe, so a caller off the loop
        thread schedules the broadcast with call_soon_threadsafe instead of
        touching transports directly. Before the first connection there is
        no loop bound yet — and nobody to deliver to — so this is a no-op.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("sse.broadcast_skipped", event_type=event_type, reason="no_loop")
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self.broadcast(topic, event_type, payload)
        else:
            loop.call_soon_threadsafe(self.broadcast, topic, event_type, payload)

    def _bind_loop(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass
