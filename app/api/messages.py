"""HTTP endpoints for one-to-one chat messages."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import PersistenceError, get_db
from app.models import User
from app.schemas import MessageCreate, MessageRead, PublicUser
from app.services import users as user_store
from app.services.messages import RecipientNotFoundError, list_conversation_messages, list_sidebar_users
from genchat.messaging import MessageValidationError
from genchat.realtime.managers import get_message_pipeline

router = APIRouter(prefix="/messages", tags=["messages"])

logger = logging.getLogger(__name__)


@router.get("/users", response_model=list[PublicUser])
async def sidebar_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[PublicUser]:
    """Other users, most recent conversation partners first."""

    return list_sidebar_users(db, current_user.id)


@router.get("/search", response_model=list[PublicUser])
async def search_users(
    q: str = Query(min_length=1),
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[PublicUser]:
    """Find other users by username or tag."""

    return user_store.search_users(db, current_user.id, q, limit=limit)


@router.get("/{other_id}", response_model=list[MessageRead])
async def conversation_history(
    other_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[MessageRead]:
    return list_conversation_messages(db, current_user.id, other_id)


@router.post("/send/{receiver_id}", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    receiver_id: str,
    payload: MessageCreate,
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Store a message and push it to the receiver if they are online."""

    pipeline = get_message_pipeline()
    try:
        return await pipeline.send_message(current_user.id, receiver_id, payload.text, payload.image)
    except MessageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RecipientNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from exc
    except PersistenceError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send message",
        ) from exc
