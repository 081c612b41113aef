"""Typing indicator relay. Nothing here is stored."""

from __future__ import annotations

from .presence import PresenceRegistry
from .protocol import StopTypingNotice, TypingNotice


class TypingRelay:
    """Forwards typing start/stop to every session of the target user."""

    def __init__(self, presence: PresenceRegistry) -> None:
        self._presence = presence

    async def typing(self, sender_id: str, to: str) -> int:
        return await self._presence.send_frame(to, TypingNotice(from_=sender_id).frame())

    async def stop_typing(self, sender_id: str, to: str) -> int:
        return await self._presence.send_frame(to, StopTypingNotice(from_=sender_id).frame())
