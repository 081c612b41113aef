"""User lookups and the public projection shared by every payload."""

from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.models import User
from app.schemas import PublicUser


def serialize_public_user(user: User) -> PublicUser:
    return PublicUser(
        id=user.id,
        username=user.username,
        tag=user.tag,
        full_name=user.full_name,
        profile_pic=user.profile_pic or "",
    )


def get_user_by_username(db: Session, username: str) -> User | None:
    stmt = select(User).where(User.username == username)
    return db.execute(stmt).scalar_one_or_none()


def search_users(db: Session, user_id: str, query: str, *, limit: int = 20) -> list[PublicUser]:
    """Users whose username or tag contains ``query``, ignoring case. Excludes ``user_id``."""

    term = query.strip()
    if not term:
        return []
    pattern = f"%{term}%"
    stmt = (
        select(User)
        .where(
            User.id != user_id,
            or_(User.username.ilike(pattern), User.tag.ilike(pattern)),
        )
        .order_by(User.username)
        .limit(limit)
    )
    return [serialize_public_user(user) for user in db.execute(stmt).scalars()]
