"""Persistence operations for call logs."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from app.models import CallLog, CallStatus, CallType, User
from app.schemas import CallLogRead
from app.services.users import serialize_public_user
from genchat.calls.states import answered_duration, transition


def serialize_call_log(call_log: CallLog) -> CallLogRead:
    return CallLogRead(
        id=call_log.id,
        caller=serialize_public_user(call_log.caller),
        callee=serialize_public_user(call_log.callee),
        call_type=call_log.call_type,
        status=call_log.status,
        duration=call_log.duration or 0,
        created_at=call_log.created_at,
        updated_at=call_log.updated_at,
    )


def _load(db: Session, call_id: str) -> CallLog | None:
    stmt = (
        select(CallLog)
        .options(selectinload(CallLog.caller), selectinload(CallLog.callee))
        .where(CallLog.id == call_id)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def create_call_log(db: Session, caller_id: str, callee_id: str, call_type: CallType) -> CallLogRead:
    """Write a new log in ``missed`` status."""

    if db.get(User, callee_id) is None:
        raise LookupError(callee_id)
    call_log = CallLog(
        caller_id=caller_id,
        callee_id=callee_id,
        call_type=CallType(call_type),
        status=CallStatus.MISSED,
        duration=0,
    )
    db.add(call_log)
    db.commit()
    return serialize_call_log(_load(db, call_log.id))


def get_call_log_view(db: Session, call_id: str) -> CallLogRead | None:
    call_log = _load(db, call_id)
    return serialize_call_log(call_log) if call_log is not None else None


def _participant_log(db: Session, call_id: str, actor_id: str) -> CallLog | None:
    call_log = db.get(CallLog, call_id)
    if call_log is None or actor_id not in (call_log.caller_id, call_log.callee_id):
        return None
    return call_log


def _compare_and_set(
    db: Session,
    call_log: CallLog,
    target: CallStatus,
    **values,
) -> bool:
    current = CallStatus(call_log.status)
    transition(current, target)
    stmt = (
        update(CallLog)
        .where(CallLog.id == call_log.id, CallLog.status == current)
        .values(status=target, updated_at=datetime.now(timezone.utc), **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return bool(result.rowcount)


def apply_status(db: Session, call_id: str, target: CallStatus, actor_id: str) -> bool:
    """Move a participant's call log to ``target``.

    Returns ``False`` when the log is missing, the actor is not a participant,
    or a concurrent update resolved the log first. Raises
    :class:`genchat.calls.states.InvalidCallTransition` for moves the status
    model forbids.
    """

    call_log = _participant_log(db, call_id, actor_id)
    if call_log is None:
        return False
    return _compare_and_set(db, call_log, CallStatus(target))


def finalize_on_hangup(db: Session, call_id: str, ended_at: datetime, actor_id: str) -> bool:
    """Resolve a still ``missed`` log to ``answered`` with its elapsed duration.

    Logs that were already resolved are left untouched and ``False`` is
    returned.
    """

    call_log = _participant_log(db, call_id, actor_id)
    if call_log is None or CallStatus(call_log.status) is not CallStatus.MISSED:
        return False
    duration = answered_duration(call_log.created_at, ended_at)
    return _compare_and_set(db, call_log, CallStatus.ANSWERED, duration=duration)


def list_call_logs(db: Session, user_id: str) -> list[CallLogRead]:
    """Every call the user took part in, newest first."""

    stmt = (
        select(CallLog)
        .options(selectinload(CallLog.caller), selectinload(CallLog.callee))
        .where(or_(CallLog.caller_id == user_id, CallLog.callee_id == user_id))
        .order_by(CallLog.created_at.desc())
    )
    return [serialize_call_log(call_log) for call_log in db.execute(stmt).scalars()]
