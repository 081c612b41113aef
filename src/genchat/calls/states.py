"""Call status model.

A call log is written as ``missed`` the moment a call is initiated and is then
resolved at most once, to ``declined`` or ``answered``. Resolved logs never
change status again.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping

from app.models.enums import CallStatus, CallType

ALLOWED_TRANSITIONS: Mapping[CallStatus, frozenset[CallStatus]] = {
    CallStatus.MISSED: frozenset({CallStatus.DECLINED, CallStatus.ANSWERED}),
    CallStatus.DECLINED: frozenset(),
    CallStatus.ANSWERED: frozenset(),
}


class InvalidCallTransition(ValueError):
    """Raised when a call log is asked to move to a status it cannot reach."""

    def __init__(self, current: CallStatus, target: CallStatus) -> None:
        super().__init__(f"call cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(CallStatus(current), frozenset())


def transition(current: CallStatus, target: CallStatus) -> CallStatus:
    """Return ``target`` if the move is allowed, raise otherwise."""

    current = CallStatus(current)
    target = CallStatus(target)
    if not can_transition(current, target):
        raise InvalidCallTransition(current, target)
    return target


def answered_duration(created_at: datetime, ended_at: datetime) -> int:
    """Whole seconds between log creation and hangup, never negative.

    Naive timestamps are treated as UTC; some databases drop the offset.
    """

    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if ended_at.tzinfo is None:
        ended_at = ended_at.replace(tzinfo=timezone.utc)
    return max(int((ended_at - created_at).total_seconds()), 0)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CallStatus",
    "CallType",
    "InvalidCallTransition",
    "answered_duration",
    "can_transition",
    "transition",
]
