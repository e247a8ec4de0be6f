"""Pydantic schemas for chat frames.

Learn: The same shape travels both ways over the websocket:

    {"id": "...", "message": "...", "user_id": "...",
     "sent": "2025-01-01T09:00:00Z", "edited": null}

Clients may send just {"message": "..."} (or the HTTP API's {"msg": ...});
from_frame() fills in the id and timestamp and stamps the sender's
authenticated user id over whatever the frame claimed.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    message: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("message", "msg")
    )
    user_id: str = ""
    sent: datetime = Field(default_factory=utcnow)
    edited: Optional[datetime] = None

    @classmethod
    def from_frame(cls, frame: Any, user_id: str) -> "ChatMessage":
        """Validate an inbound frame.

        Raises ValueError (pydantic.ValidationError is one) for anything
        that is not a JSON object carrying a non-empty message.
        """
        if not isinstance(frame, dict):
            raise ValueError("chat frame must be a JSON object")
        return cls.model_validate({**frame, "user_id": user_id})

    def to_frame(self) -> dict:
        return self.model_dump(mode="json")
