"""Friend list and friend request endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.schemas import (
    FriendRequestCreate,
    FriendRequestList,
    FriendRequestNotice,
    FriendRequestRead,
    PublicUser,
)
from app.services import friends as friend_service
from genchat.realtime.managers import get_presence_registry
from genchat.realtime.protocol import friend_request_accepted, friend_request_received

router = APIRouter(prefix="/friends", tags=["friends"])

_FRIEND_ERRORS = (
    friend_service.FriendRequestError,
    friend_service.FriendRequestNotFound,
    friend_service.FriendRequestForbidden,
)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, friend_service.FriendRequestNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if isinstance(exc, friend_service.FriendRequestForbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("", response_model=list[PublicUser])
async def list_friends(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[PublicUser]:
    """Return accepted friends for the current user."""

    return friend_service.list_friends(db, current_user.id)


@router.get("/requests", response_model=FriendRequestList)
async def list_friend_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestList:
    """Return incoming and outgoing pending requests."""

    return friend_service.list_requests(db, current_user.id)


@router.post("/requests", response_model=FriendRequestRead, status_code=status.HTTP_201_CREATED)
async def create_friend_request(
    payload: FriendRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestRead:
    """Send a request and notify the addressee's sessions."""

    try:
        request = friend_service.send_request(db, current_user.id, payload.username)
    except _FRIEND_ERRORS as exc:
        raise _http_error(exc) from exc

    notice = FriendRequestNotice(id=request.id, from_=request.requester, created_at=request.created_at)
    await get_presence_registry().send_frame(request.addressee.id, friend_request_received(notice))
    return request


@router.post("/requests/{request_id}/accept", response_model=FriendRequestRead)
async def accept_friend_request(
    request_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestRead:
    try:
        request = friend_service.accept_request(db, request_id, current_user.id)
    except _FRIEND_ERRORS as exc:
        raise _http_error(exc) from exc

    await get_presence_registry().send_frame(
        request.requester.id, friend_request_accepted(request.addressee)
    )
    return request


@router.post("/requests/{request_id}/decline", response_model=FriendRequestRead)
async def decline_friend_request(
    request_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FriendRequestRead:
    try:
        return friend_service.decline_request(db, request_id, current_user.id)
    except _FRIEND_ERRORS as exc:
        raise _http_error(exc) from exc
