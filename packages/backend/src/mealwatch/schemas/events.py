"""Pydantic schema for the event frame JSON.

Learn: The wire format uses camelCase (schoolId, clientId) because the
browser gallery was its first consumer. Field aliases keep the Python
side snake_case while serializing exactly what the galleries expect.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class EventFrame(BaseModel):
    """One frame's JSON body.

    Event frames carry ``schoolId`` + ``data``; the handshake frame
    carries ``clientId`` instead. Only fields that were explicitly set
    are serialized, so a broadcast with no topic omits ``schoolId``.
    """

    type: str
    school_id: Optional[str] = Field(None, alias="schoolId")
    client_id: Optional[str] = Field(None, alias="clientId")
    timestamp: Optional[datetime] = None
    data: Any = None

    model_config = {"populate_by_name": True, "extra": "allow"}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_unset=True)
