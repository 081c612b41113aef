"""Schemas for call log records."""

from __future__ import annotations

from datetime import datetime

from app.models.enums import CallStatus, CallType
from app.schemas.base import WireModel
from app.schemas.users import PublicUser


class CallLogRead(WireModel):
    """Call log with both participants resolved."""

    id: str
    caller: PublicUser
    callee: PublicUser
    call_type: CallType
    status: CallStatus
    duration: int = 0
    created_at: datetime
    updated_at: datetime

    def for_viewer(self, viewer_id: str) -> dict:
        """Wire form for one participant; ``receiverId`` is the other party."""

        other = self.callee if self.caller.id == viewer_id else self.caller
        return {**self.to_wire(), "receiverId": other.to_wire()}
