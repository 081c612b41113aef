from __future__ import annotations

from enum import Enum


class CallType(str, Enum):
    """Media requested when a call is initiated."""

    AUDIO = "audio"
    VIDEO = "video"


class CallStatus(str, Enum):
    """Persisted outcome of a call attempt."""

    MISSED = "missed"
    DECLINED = "declined"
    ANSWERED = "answered"


class FriendRequestStatus(str, Enum):
    """Lifecycle states for friend relationships."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
