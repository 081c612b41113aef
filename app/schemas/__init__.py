"""Pydantic schemas for API payloads."""

from .base import WireModel
from .calls import CallLogRead
from .messages import MessageCreate, MessageRead
from .users import (
    FriendRequestCreate,
    FriendRequestList,
    FriendRequestNotice,
    FriendRequestRead,
    PublicUser,
)

__all__ = [
    "WireModel",
    "PublicUser",
    "FriendRequestCreate",
    "FriendRequestList",
    "FriendRequestNotice",
    "FriendRequestRead",
    "MessageCreate",
    "MessageRead",
    "CallLogRead",
]
