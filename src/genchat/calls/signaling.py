"""Call signaling: relays offers, answers and candidates between peers.

The persisted call status lives in the call log (see :mod:`.states`). Whether
two peers are actually connected is never stored; it follows from the
answer/ICE exchange on the clients.

Every operation returns a :class:`SignalResult`. Handlers decide what the
acting session is told; this module never sends error frames itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.database import PersistenceError, run_in_session
from app.monitoring.metrics import call_status_transitions_total, persistence_failures_total
from app.services import call_logs as call_log_store

from ..realtime.presence import PresenceRegistry
from ..realtime.protocol import (
    CallAcceptedNotice,
    CallAnsweredElsewhereNotice,
    CallDeclinedElsewhereNotice,
    CallDeclinedNotice,
    HangupNotice,
    IceCandidateNotice,
    IncomingCallNotice,
    RenegotiateNotice,
)
from .states import CallStatus, CallType, InvalidCallTransition
from .sync import CallLogSynchronizer

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalOutcome(str, Enum):
    RELAYED = "relayed"
    TARGET_OFFLINE = "target_offline"
    PERSISTENCE_FAILED = "persistence_failed"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class SignalResult:
    outcome: SignalOutcome
    call_id: str | None = None
    detail: str | None = None
    delivered: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is SignalOutcome.RELAYED


class CallSignalingService:
    def __init__(
        self,
        presence: PresenceRegistry,
        synchronizer: CallLogSynchronizer,
        session_factory: Callable[[], Session],
        *,
        timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._presence = presence
        self._sync = synchronizer
        self._session_factory = session_factory
        self._timeout = timeout
        self._clock = clock

    async def _store(self, name: str, operation, *args):
        try:
            return await run_in_session(self._session_factory, operation, *args, timeout=self._timeout)
        except PersistenceError:
            persistence_failures_total.labels(name).inc()
            logger.warning(
                "Call store operation %s failed",
                name,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise

    async def initiate(self, caller_id: str, to: str, offer: Any, call_type: CallType) -> SignalResult:
        """Ring every session of ``to`` and write the call log as ``missed``.

        No log is written when the callee is offline.
        """

        if to == caller_id:
            return SignalResult(SignalOutcome.REJECTED, detail="You cannot call yourself")
        if not self._presence.is_online(to):
            return SignalResult(SignalOutcome.TARGET_OFFLINE)

        try:
            call_log = await self._store(
                "create_call_log", call_log_store.create_call_log, caller_id, to, CallType(call_type)
            )
        except PersistenceError as exc:
            return SignalResult(SignalOutcome.PERSISTENCE_FAILED, detail=str(exc) or "Store unavailable")
        except LookupError:
            return SignalResult(SignalOutcome.REJECTED, detail="Unknown user")
        call_status_transitions_total.labels(CallStatus.MISSED.value).inc()

        notice = IncomingCallNotice(
            from_=call_log.caller,
            offer=offer,
            call_id=call_log.id,
            call_type=call_log.call_type,
        )
        delivered = await self._presence.send_frame(to, notice.frame())
        await self._sync.publish(call_log)
        if not delivered:
            # The callee dropped between the presence check and the relay.
            return SignalResult(SignalOutcome.TARGET_OFFLINE, call_id=call_log.id)
        logger.info("Call %s from %s to %s ringing on %d session(s)", call_log.id, caller_id, to, delivered)
        return SignalResult(SignalOutcome.RELAYED, call_id=call_log.id, delivered=delivered)

    async def accept(
        self,
        callee_id: str,
        session_id: str,
        to: str,
        answer: Any,
        call_id: str,
    ) -> SignalResult:
        """Relay the answer and dismiss the ringing on the callee's other devices.

        The call log is left as ``missed``; it is resolved at hangup.
        """

        notice = CallAcceptedNotice(from_=callee_id, answer=answer, call_id=call_id)
        delivered = await self._presence.send_frame(to, notice.frame())
        await self._presence.send_frame(
            callee_id,
            CallAnsweredElsewhereNotice(call_id=call_id).frame(),
            exclude={session_id},
        )
        if not delivered:
            return SignalResult(SignalOutcome.TARGET_OFFLINE, call_id=call_id)
        return SignalResult(SignalOutcome.RELAYED, call_id=call_id, delivered=delivered)

    async def decline(self, callee_id: str, session_id: str, to: str, call_id: str) -> SignalResult:
        """Resolve the log to ``declined`` and tell the caller.

        The relay happens even when the log could not be written.
        """

        failure: str | None = None
        try:
            changed = await self._store(
                "decline_call", call_log_store.apply_status, call_id, CallStatus.DECLINED, callee_id
            )
        except PersistenceError as exc:
            changed, failure = False, str(exc) or "Store unavailable"
        except InvalidCallTransition as exc:
            logger.debug("Decline of call %s ignored: %s", call_id, exc)
            changed = False

        if changed:
            call_status_transitions_total.labels(CallStatus.DECLINED.value).inc()
            await self._sync.emit_call_log_update(call_id)

        delivered = await self._presence.send_frame(
            to, CallDeclinedNotice(from_=callee_id, call_id=call_id).frame()
        )
        await self._presence.send_frame(
            callee_id,
            CallDeclinedElsewhereNotice(call_id=call_id).frame(),
            exclude={session_id},
        )
        if failure is not None:
            return SignalResult(SignalOutcome.PERSISTENCE_FAILED, call_id=call_id, detail=failure)
        return SignalResult(SignalOutcome.RELAYED, call_id=call_id, delivered=delivered)

    async def hangup(self, user_id: str, to: str, call_id: str) -> SignalResult:
        """Relay the hangup; a log still ``missed`` becomes ``answered``.

        The duration is measured from log creation to now, so a caller who
        gives up while ringing is also recorded as answered.
        """

        failure: str | None = None
        try:
            changed = await self._store(
                "hangup_call", call_log_store.finalize_on_hangup, call_id, self._clock(), user_id
            )
        except PersistenceError as exc:
            changed, failure = False, str(exc) or "Store unavailable"

        if changed:
            call_status_transitions_total.labels(CallStatus.ANSWERED.value).inc()
            await self._sync.emit_call_log_update(call_id)

        delivered = await self._presence.send_frame(
            to, HangupNotice(from_=user_id, call_id=call_id).frame()
        )
        if failure is not None:
            return SignalResult(SignalOutcome.PERSISTENCE_FAILED, call_id=call_id, detail=failure)
        return SignalResult(SignalOutcome.RELAYED, call_id=call_id, delivered=delivered)

    async def renegotiate(self, user_id: str, to: str, offer: Any, call_id: str) -> SignalResult:
        notice = RenegotiateNotice(from_=user_id, offer=offer, call_id=call_id)
        delivered = await self._presence.send_frame(to, notice.frame())
        outcome = SignalOutcome.RELAYED if delivered else SignalOutcome.TARGET_OFFLINE
        return SignalResult(outcome, call_id=call_id, delivered=delivered)

    async def ice_candidate(
        self,
        user_id: str,
        to: str,
        candidate: Any,
        call_id: str | None = None,
    ) -> SignalResult:
        notice = IceCandidateNotice(from_=user_id, candidate=candidate, call_id=call_id)
        delivered = await self._presence.send_frame(to, notice.frame())
        outcome = SignalOutcome.RELAYED if delivered else SignalOutcome.TARGET_OFFLINE
        return SignalResult(outcome, call_id=call_id, delivered=delivered)
