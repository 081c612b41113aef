"""Database models package."""

from .base import Base
from .chat import CallLog, Conversation, EncryptedText, FriendLink, Message, User
from .enums import CallStatus, CallType, FriendRequestStatus

__all__ = [
    "Base",
    "User",
    "FriendLink",
    "Conversation",
    "Message",
    "CallLog",
    "EncryptedText",
    "CallStatus",
    "CallType",
    "FriendRequestStatus",
]
