"""SSE endpoint — the long-lived stream galleries listen on.

Learn: Each GET /api/photos/events becomes one hub connection:
1. Once the response starts streaming, a QueueTransport is registered
   with the hub (handshake frame queued)
2. The response streams whatever the hub writes into that queue
3. When the client goes away or the stream errors, the generator's
   finally block removes the connection

Starlette cancels the generator on client disconnect; on servers that
don't report disconnects, the next write (an event or a keepalive
comment) fails and we land in the same finally block.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from mealwatch.config import settings
from mealwatch.realtime.hub import BroadcastHub
from mealwatch.realtime.relay import Publisher
from mealwatch.realtime.transport import QueueTransport

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_hub(request: Request) -> BroadcastHub:
    """The process-wide hub, created once in create_app()."""
    return request.app.state.hub


def get_publisher(request: Request) -> Publisher:
    """Publisher for mutation handlers (relay-aware)."""
    return request.app.state.publisher


@router.get("/photos/events")
async def photo_events(hub: BroadcastHub = Depends(get_hub)):
    """Stream photo events as Server-Sent Events."""
    transport = QueueTransport(maxsize=settings.stream_queue_size)

    async def event_stream():
        # Registered only once the response is streaming, so every
        # accepted connection reaches the finally below
        client_id = hub.accept_connection(transport)
        try:
            async for frame in transport.frames(keepalive=settings.keepalive_seconds):
                yield frame
        finally:
            hub.remove(client_id)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
