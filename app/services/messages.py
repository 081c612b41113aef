"""Persistence operations behind the message delivery pipeline.

Every function takes an open session and commits its own work, so callers can
run them through :func:`app.database.run_in_session`.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Conversation, Message, User
from app.schemas import MessageRead, PublicUser
from app.services.users import serialize_public_user


class RecipientNotFoundError(LookupError):
    """Raised when a message targets a user that does not exist."""


def normalize_pair(user_id: str, other_id: str) -> tuple[str, str]:
    return (user_id, other_id) if user_id < other_id else (other_id, user_id)


def serialize_message(message: Message) -> MessageRead:
    return MessageRead(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        text=message.text,
        image=message.image or "",
        delivered=message.delivered,
        seen=message.seen,
        created_at=message.created_at,
    )


def find_conversation(db: Session, user_id: str, other_id: str) -> Conversation | None:
    user_a_id, user_b_id = normalize_pair(user_id, other_id)
    stmt = select(Conversation).where(
        Conversation.user_a_id == user_a_id,
        Conversation.user_b_id == user_b_id,
    )
    return db.execute(stmt).scalar_one_or_none()


def ensure_conversation(db: Session, user_id: str, other_id: str) -> Conversation:
    conversation = find_conversation(db, user_id, other_id)
    if conversation is not None:
        return conversation

    user_a_id, user_b_id = normalize_pair(user_id, other_id)
    conversation = Conversation(user_a_id=user_a_id, user_b_id=user_b_id)
    db.add(conversation)
    try:
        db.flush()
    except IntegrityError:
        # Created concurrently by the other participant.
        db.rollback()
        conversation = find_conversation(db, user_id, other_id)
        if conversation is None:
            raise
    return conversation


def create_message(
    db: Session,
    sender_id: str,
    receiver_id: str,
    text: str | None,
    image: str | None,
    delivered: bool,
) -> MessageRead:
    """Store a message and bump its conversation in a single transaction."""

    if db.get(User, receiver_id) is None:
        raise RecipientNotFoundError(receiver_id)

    conversation = ensure_conversation(db, sender_id, receiver_id)
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        text=text,
        image=image or "",
        delivered=delivered,
    )
    conversation.last_message_at = datetime.now(timezone.utc)
    db.add(message)
    db.add(conversation)
    db.commit()
    db.refresh(message)
    return serialize_message(message)


def _flag_unread(flag, conversation_id: str, sender_id: str, viewer_id: str):
    column = getattr(Message, flag)
    return (
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.sender_id == sender_id,
            Message.receiver_id == viewer_id,
            column.is_(False),
        )
        .values({flag: True})
        .execution_options(synchronize_session=False)
    )


def mark_seen(db: Session, conversation_id: str, sender_id: str, viewer_id: str) -> int:
    result = db.execute(_flag_unread("seen", conversation_id, sender_id, viewer_id))
    db.commit()
    return result.rowcount or 0


def mark_delivered(db: Session, conversation_id: str, sender_id: str, viewer_id: str) -> int:
    result = db.execute(_flag_unread("delivered", conversation_id, sender_id, viewer_id))
    db.commit()
    return result.rowcount or 0


def deliver_pending(db: Session, receiver_id: str) -> dict[str, list[str]]:
    """Flip every undelivered message addressed to ``receiver_id``.

    Returns the affected conversation ids keyed by original sender. Each
    conversation is flipped by its own conditional UPDATE and only counted
    when that UPDATE changed rows, so a concurrent run for another device of
    the same receiver reports nothing twice.
    """

    pending = (
        select(Message.sender_id, Message.conversation_id)
        .where(Message.receiver_id == receiver_id, Message.delivered.is_(False))
        .distinct()
    )
    groups = db.execute(pending).all()
    if not groups:
        return {}

    by_sender: dict[str, list[str]] = defaultdict(list)
    for sender_id, conversation_id in groups:
        result = db.execute(_flag_unread("delivered", conversation_id, sender_id, receiver_id))
        if result.rowcount:
            by_sender[sender_id].append(conversation_id)
    db.commit()
    return dict(by_sender)


def list_conversation_messages(db: Session, user_id: str, other_id: str) -> list[MessageRead]:
    conversation = find_conversation(db, user_id, other_id)
    if conversation is None:
        return []
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .order_by(Message.created_at.asc())
    )
    return [serialize_message(message) for message in db.execute(stmt).scalars()]


def list_sidebar_users(db: Session, user_id: str) -> list[PublicUser]:
    """Other users, most recent conversation partners first, then alphabetical."""

    stmt = (
        select(Conversation)
        .where(or_(Conversation.user_a_id == user_id, Conversation.user_b_id == user_id))
        .order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
    )
    recent = [conversation.other_participant(user_id) for conversation in db.execute(stmt).scalars()]
    rank = {other_id: index for index, other_id in enumerate(recent)}

    users = db.execute(select(User).where(User.id != user_id)).scalars().all()
    ordered = sorted(
        users,
        key=lambda user: (
            rank.get(user.id, len(rank)),
            (user.full_name or user.username).lower(),
        ),
    )
    return [serialize_public_user(user) for user in ordered]
