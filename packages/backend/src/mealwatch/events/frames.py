"""Frame format — how one Event travels over the SSE stream.

Learn: Each frame is a UTF-8 text block:

    data: {"type": "photo_added", "schoolId": "school-42", ...}
    <blank line>

Encoding happens once per broadcast (not once per connection). Decoding
follows the SSE line protocol so the consumer tolerates anything a
standards-compliant server or proxy might add: comments (": keepalive"),
multi-line data, and event/id/retry fields we don't use.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from pydantic import ValidationError

from mealwatch.events.types import EventType
from mealwatch.schemas.events import EventFrame

KEEPALIVE_FRAME = ": keepalive\n\n"


class FrameDecodeError(ValueError):
    """Raised when a frame's data is not a valid event object."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Event:
    """An immutable fact to broadcast.

    topic is the school the event concerns, or None for events that
    apply to no specific school (those reach wildcard subscribers only).
    """

    event_type: str
    topic: Optional[str]
    payload: Any = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def kind(self) -> EventType:
        return EventType.parse(self.event_type)

    def to_frame(self) -> EventFrame:
        fields: dict[str, Any] = {
            "type": self.event_type,
            "timestamp": self.timestamp,
            "data": self.payload,
        }
        if self.topic is not None:
            fields["school_id"] = self.topic
        return EventFrame(**fields)

    @classmethod
    def from_frame(cls, frame: EventFrame) -> "Event":
        return cls(
            event_type=frame.type,
            topic=frame.school_id,
            payload=frame.data,
            timestamp=frame.timestamp or _utcnow(),
        )


# ─── Encoding ─────────────────────────────────────────────


def encode_frame(frame: EventFrame) -> str:
    """Serialize a frame body into one SSE block."""
    return f"data: {frame.to_json()}\n\n"


def encode_event(event: Event) -> str:
    return encode_frame(event.to_frame())


def encode_connected(client_id: str, timestamp: Optional[datetime] = None) -> str:
    """The handshake frame a new connection receives before anything else."""
    frame = EventFrame(
        type=EventType.CONNECTED.value,
        client_id=client_id,
        timestamp=timestamp or _utcnow(),
    )
    return encode_frame(frame)


# ─── Decoding ─────────────────────────────────────────────


def decode_frame(data: str) -> EventFrame:
    """Parse the data of one frame.

    Raises FrameDecodeError for invalid JSON, non-object JSON, or an
    object without a string ``type``.
    """
    try:
        return EventFrame.model_validate_json(data)
    except ValidationError as e:
        raise FrameDecodeError(f"Malformed event frame: {e.error_count()} error(s)") from e


class FrameDecoder:
    """Incremental SSE decoder — feed it lines, get frame data back.

    Learn: The stream arrives line by line (httpx aiter_lines strips the
    line endings). Consecutive ``data:`` lines are joined with "\\n" and a
    blank line terminates the frame. As in browsers, an unterminated
    frame at end-of-stream is discarded, so there is no flush().
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> Optional[str]:
        """Consume one line; return the frame data when a frame completes."""
        if line == "":
            if not self._data:
                return None
            data = "\n".join(self._data)
            self._data = []
            return data

        if line.startswith(":"):
            return None  # comment

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        return None


def iter_frame_data(text: str) -> Iterator[str]:
    """Split a complete stream body into frame data strings."""
    decoder = FrameDecoder()
    for line in text.splitlines():
        data = decoder.feed(line)
        if data is not None:
            yield data
    # A body ending right after the last "data:" line still counts
    data = decoder.feed("")
    if data is not None:
        yield data
