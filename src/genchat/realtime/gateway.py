"""Turns decoded socket events into core operations and their replies."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi.websockets import WebSocket

from app.database import PersistenceError
from app.monitoring.metrics import realtime_events_total

from ..calls.signaling import CallSignalingService, SignalOutcome, SignalResult
from ..calls.sync import CallLogSynchronizer
from ..messaging.pipeline import MessageDeliveryPipeline
from .indicators import TypingRelay
from .presence import PresenceRegistry, Session
from .protocol import (
    AnswerCall,
    CallFailedNotice,
    CallUser,
    DeclineCall,
    ErrorNotice,
    FetchCallLogs,
    Hangup,
    IceCandidate,
    InboundEvent,
    MarkMessagesAsDelivered,
    MarkMessagesAsSeen,
    Ping,
    ProtocolError,
    RenegotiateCall,
    StopTyping,
    Typing,
    UserOfflineNotice,
    decode_event,
    pong,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any], Awaitable[None]]


class RealtimeGateway:
    """Entry point for one socket's lifecycle and inbound frames."""

    def __init__(
        self,
        presence: PresenceRegistry,
        typing: TypingRelay,
        messages: MessageDeliveryPipeline,
        calls: CallSignalingService,
        call_logs: CallLogSynchronizer,
    ) -> None:
        self._presence = presence
        self._typing = typing
        self._messages = messages
        self._calls = calls
        self._call_logs = call_logs
        self._handlers: dict[type[InboundEvent], Handler] = {
            CallUser: self._on_call_user,
            AnswerCall: self._on_answer_call,
            DeclineCall: self._on_decline_call,
            Hangup: self._on_hangup,
            RenegotiateCall: self._on_renegotiate,
            IceCandidate: self._on_ice_candidate,
            Typing: self._on_typing,
            StopTyping: self._on_stop_typing,
            MarkMessagesAsSeen: self._on_mark_seen,
            MarkMessagesAsDelivered: self._on_mark_delivered,
            FetchCallLogs: self._on_fetch_call_logs,
            Ping: self._on_ping,
        }

    async def connect(self, user_id: str, websocket: WebSocket) -> Session:
        return await self._presence.register(user_id, websocket)

    async def disconnect(self, session: Session) -> None:
        await self._presence.deregister(session.id)

    async def handle(self, session: Session, frame: Any) -> None:
        """Decode one inbound frame and run it. Invalid frames get an ``error`` reply."""

        try:
            event = decode_event(frame)
        except ProtocolError as exc:
            realtime_events_total.labels("gateway", "in", "invalid").inc()
            await self._reply(session, ErrorNotice(detail=str(exc)).frame())
            return

        realtime_events_total.labels("gateway", "in", event.event).inc()
        handler = self._handlers[type(event)]
        await handler(session, event)

    async def _reply(self, session: Session, frame: dict[str, Any]) -> None:
        await self._presence.send_to_session(session.id, frame)

    async def _report_call_failure(self, session: Session, message: str, result: SignalResult) -> None:
        notice = CallFailedNotice(
            message=message,
            reason=result.detail or result.outcome.value,
            call_id=result.call_id,
        )
        await self._reply(session, notice.frame())

    async def _on_call_user(self, session: Session, event: CallUser) -> None:
        result = await self._calls.initiate(session.user_id, event.to, event.offer, event.call_type)
        if result.outcome is SignalOutcome.TARGET_OFFLINE:
            await self._reply(session, UserOfflineNotice(user_id=event.to).frame())
        elif not result.ok:
            await self._report_call_failure(session, "Could not initiate call", result)

    async def _on_answer_call(self, session: Session, event: AnswerCall) -> None:
        result = await self._calls.accept(session.user_id, session.id, event.to, event.answer, event.call_id)
        if result.outcome is SignalOutcome.TARGET_OFFLINE:
            await self._reply(session, UserOfflineNotice(user_id=event.to).frame())

    async def _on_decline_call(self, session: Session, event: DeclineCall) -> None:
        result = await self._calls.decline(session.user_id, session.id, event.to, event.call_id)
        if result.outcome is SignalOutcome.PERSISTENCE_FAILED:
            await self._report_call_failure(session, "Could not record declined call", result)

    async def _on_hangup(self, session: Session, event: Hangup) -> None:
        result = await self._calls.hangup(session.user_id, event.to, event.call_id)
        if result.outcome is SignalOutcome.PERSISTENCE_FAILED:
            await self._report_call_failure(session, "Could not record call end", result)

    async def _on_renegotiate(self, session: Session, event: RenegotiateCall) -> None:
        await self._calls.renegotiate(session.user_id, event.to, event.offer, event.call_id)

    async def _on_ice_candidate(self, session: Session, event: IceCandidate) -> None:
        await self._calls.ice_candidate(session.user_id, event.to, event.candidate, event.call_id)

    async def _on_typing(self, session: Session, event: Typing) -> None:
        await self._typing.typing(session.user_id, event.to)

    async def _on_stop_typing(self, session: Session, event: StopTyping) -> None:
        await self._typing.stop_typing(session.user_id, event.to)

    async def _on_mark_seen(self, session: Session, event: MarkMessagesAsSeen) -> None:
        try:
            await self._messages.mark_as_seen(session.user_id, event.conversation_id, event.user_id_of_sender)
        except PersistenceError:
            await self._reply(session, ErrorNotice(detail="Could not update messages").frame())

    async def _on_mark_delivered(self, session: Session, event: MarkMessagesAsDelivered) -> None:
        try:
            await self._messages.mark_as_delivered(
                session.user_id, event.conversation_id, event.user_id_of_sender
            )
        except PersistenceError:
            await self._reply(session, ErrorNotice(detail="Could not update messages").frame())

    async def _on_fetch_call_logs(self, session: Session, event: FetchCallLogs) -> None:
        try:
            await self._call_logs.send_history(session.user_id, session.id)
        except PersistenceError:
            await self._reply(session, ErrorNotice(detail="Could not load call logs").frame())

    async def _on_ping(self, session: Session, event: Ping) -> None:
        await self._reply(session, pong())
