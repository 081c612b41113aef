"""Presence, typing relay, wire protocol and the socket gateway.

Service construction lives in :mod:`genchat.realtime.managers`.
"""

from .indicators import TypingRelay
from .presence import PresenceRegistry, Session, safe_send_json
from .protocol import ProtocolError, decode_event

__all__ = [
    "PresenceRegistry",
    "ProtocolError",
    "Session",
    "TypingRelay",
    "decode_event",
    "safe_send_json",
]
