"""Event type vocabulary.

Learn: Centralizing event types prevents typos between the handlers
that broadcast and the galleries that listen. The vocabulary is open:
anything we don't recognise parses to EventType.OTHER, so older clients
keep working when the server starts sending new tags.
"""

from enum import Enum

# Subscribing to this topic means "every event, whatever the school".
WILDCARD_TOPIC = "*"


class EventType(str, Enum):
    """Known event tags carried in the frame's ``type`` field."""

    # ─── Stream handshake ─────────────────────────────────

    CONNECTED = "connected"

    # ─── Inspection / school photos ───────────────────────

    PHOTO_ADDED = "photo_added"
    PHOTO_DELETED = "photo_deleted"
    PHOTOS_REFRESHED = "photos_refreshed"

    # ─── Warden meal photos ───────────────────────────────

    WARDEN_PHOTO_ADDED = "warden_photo_added"
    WARDEN_PHOTO_STATUS_UPDATED = "warden_photo_status_updated"
    WARDEN_PHOTO_DELETED = "warden_photo_deleted"

    # ─── Transport chatter (never dispatched) ─────────────

    HEARTBEAT = "heartbeat"
    PING = "ping"

    # Fallback for tags this build doesn't know about
    OTHER = "other"

    @classmethod
    def parse(cls, tag: str) -> "EventType":
        """Map a wire tag to a member, falling back to OTHER."""
        try:
            return cls(tag)
        except ValueError:
            return cls.OTHER

    @property
    def is_photo_event(self) -> bool:
        """True for the tags subscribers care about."""
        return self in PHOTO_EVENTS


PHOTO_EVENTS = frozenset({
    EventType.PHOTO_ADDED,
    EventType.PHOTO_DELETED,
    EventType.PHOTOS_REFRESHED,
    EventType.WARDEN_PHOTO_ADDED,
    EventType.WARDEN_PHOTO_STATUS_UPDATED,
    EventType.WARDEN_PHOTO_DELETED,
})

TRANSPORT_EVENTS = frozenset({EventType.HEARTBEAT, EventType.PING})
