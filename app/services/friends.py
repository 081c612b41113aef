"""Friend requests and the accepted-friends projection."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.models import FriendLink, FriendRequestStatus, User
from app.schemas import FriendRequestList, FriendRequestRead, PublicUser
from app.services.users import get_user_by_username, serialize_public_user


class FriendRequestError(ValueError):
    """Raised when a friend request cannot be created or resolved."""


class FriendRequestNotFound(LookupError):
    """Raised when a request or its target user does not exist."""


class FriendRequestForbidden(PermissionError):
    """Raised when a user acts on a request that is not theirs to resolve."""


def serialize_friend_request(link: FriendLink) -> FriendRequestRead:
    return FriendRequestRead(
        id=link.id,
        requester=serialize_public_user(link.requester),
        addressee=serialize_public_user(link.addressee),
        status=link.status,
        created_at=link.created_at,
        responded_at=link.responded_at,
    )


def _get_friend_link(db: Session, user_id: str, other_id: str) -> FriendLink | None:
    stmt = select(FriendLink).where(
        or_(
            (FriendLink.requester_id == user_id) & (FriendLink.addressee_id == other_id),
            (FriendLink.requester_id == other_id) & (FriendLink.addressee_id == user_id),
        )
    )
    return db.execute(stmt).scalars().first()


def _require_request(db: Session, request_id: str) -> FriendLink:
    stmt = (
        select(FriendLink)
        .where(FriendLink.id == request_id)
        .options(selectinload(FriendLink.requester), selectinload(FriendLink.addressee))
    )
    link = db.execute(stmt).scalar_one_or_none()
    if link is None:
        raise FriendRequestNotFound(request_id)
    return link


def send_request(db: Session, requester_id: str, username: str) -> FriendRequestRead:
    """Create a pending request from ``requester_id`` to ``username``.

    The friendship and pending checks run in the same transaction as the
    insert; the ``(requester, addressee)`` unique constraint catches a
    concurrent duplicate.
    """

    target = get_user_by_username(db, username)
    if target is None:
        raise FriendRequestNotFound(username)
    if target.id == requester_id:
        raise FriendRequestError("You cannot add yourself")

    existing = _get_friend_link(db, requester_id, target.id)
    if existing is not None:
        if existing.status == FriendRequestStatus.ACCEPTED:
            raise FriendRequestError("Already friends")
        if existing.status == FriendRequestStatus.PENDING:
            if existing.requester_id == requester_id:
                raise FriendRequestError("Request already sent")
            raise FriendRequestError("This user has already sent you a request")
        # A declined request may be sent again, in either direction.
        existing.requester_id = requester_id
        existing.addressee_id = target.id
        existing.status = FriendRequestStatus.PENDING
        existing.created_at = datetime.now(timezone.utc)
        existing.responded_at = None
        link = existing
    else:
        link = FriendLink(
            requester_id=requester_id,
            addressee_id=target.id,
            status=FriendRequestStatus.PENDING,
        )
        db.add(link)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise FriendRequestError("Request already sent") from exc
    return serialize_friend_request(_require_request(db, link.id))


def accept_request(db: Session, request_id: str, user_id: str) -> FriendRequestRead:
    link = _require_request(db, request_id)
    if link.addressee_id != user_id:
        raise FriendRequestForbidden(request_id)
    if link.status == FriendRequestStatus.ACCEPTED:
        return serialize_friend_request(link)
    if link.status != FriendRequestStatus.PENDING:
        raise FriendRequestError("Request is no longer pending")

    link.status = FriendRequestStatus.ACCEPTED
    link.responded_at = datetime.now(timezone.utc)
    db.add(link)
    db.commit()
    return serialize_friend_request(_require_request(db, request_id))


def decline_request(db: Session, request_id: str, user_id: str) -> FriendRequestRead:
    link = _require_request(db, request_id)
    if user_id not in (link.addressee_id, link.requester_id):
        raise FriendRequestForbidden(request_id)
    if link.status != FriendRequestStatus.PENDING:
        raise FriendRequestError("Request is no longer pending")

    link.status = FriendRequestStatus.DECLINED
    link.responded_at = datetime.now(timezone.utc)
    db.add(link)
    db.commit()
    return serialize_friend_request(_require_request(db, request_id))


def list_friends(db: Session, user_id: str) -> list[PublicUser]:
    """Accepted friends of ``user_id`` sorted by display name."""

    stmt = (
        select(FriendLink)
        .where(
            FriendLink.status == FriendRequestStatus.ACCEPTED,
            or_(FriendLink.requester_id == user_id, FriendLink.addressee_id == user_id),
        )
        .options(selectinload(FriendLink.requester), selectinload(FriendLink.addressee))
    )
    friends: list[User] = []
    for link in db.execute(stmt).scalars():
        friends.append(link.addressee if link.requester_id == user_id else link.requester)
    friends.sort(key=lambda friend: (friend.full_name or friend.username).lower())
    return [serialize_public_user(friend) for friend in friends]


def list_requests(db: Session, user_id: str) -> FriendRequestList:
    stmt = (
        select(FriendLink)
        .where(
            FriendLink.status == FriendRequestStatus.PENDING,
            or_(FriendLink.requester_id == user_id, FriendLink.addressee_id == user_id),
        )
        .options(selectinload(FriendLink.requester), selectinload(FriendLink.addressee))
        .order_by(FriendLink.created_at.asc())
    )
    incoming: list[FriendRequestRead] = []
    outgoing: list[FriendRequestRead] = []
    for link in db.execute(stmt).scalars():
        payload = serialize_friend_request(link)
        if link.addressee_id == user_id:
            incoming.append(payload)
        else:
            outgoing.append(payload)
    return FriendRequestList(incoming=incoming, outgoing=outgoing)
