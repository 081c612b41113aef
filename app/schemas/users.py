"""Schemas related to user projections and friendships."""

from datetime import datetime

from pydantic import Field, constr

from app.models.enums import FriendRequestStatus
from app.schemas.base import WireModel


class PublicUser(WireModel):
    """Display-safe projection of a user. Never carries credentials."""

    id: str
    username: str
    tag: str | None = None
    full_name: str | None = None
    profile_pic: str = ""


class FriendRequestRead(WireModel):
    """Serialized friend request including participants."""

    id: str
    requester: PublicUser
    addressee: PublicUser
    status: FriendRequestStatus
    created_at: datetime
    responded_at: datetime | None = None


class FriendRequestList(WireModel):
    """Categorized friend requests for convenience in the UI."""

    incoming: list[FriendRequestRead] = Field(default_factory=list)
    outgoing: list[FriendRequestRead] = Field(default_factory=list)


class FriendRequestCreate(WireModel):
    """Payload for sending a friend request."""

    username: constr(strip_whitespace=True, min_length=1, max_length=64) = Field(
        ..., description="Target user name"
    )


class FriendRequestNotice(WireModel):
    """Pushed to the addressee when a request arrives."""

    id: str
    from_: PublicUser = Field(alias="from")
    created_at: datetime
