"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, model_validator

from app.schemas.base import WireModel


class MessageCreate(WireModel):
    """Body of a send-message request."""

    text: str | None = Field(default=None, description="Plain message text")
    image: str | None = Field(default=None, description="Optional image URI")

    @model_validator(mode="after")
    def require_content(self) -> "MessageCreate":
        text = (self.text or "").strip()
        if not text and not self.image:
            raise ValueError("Message must contain text or an image")
        return self


class MessageRead(WireModel):
    """Serialized message with decrypted text."""

    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    text: str | None = None
    image: str = ""
    delivered: bool
    seen: bool
    created_at: datetime
