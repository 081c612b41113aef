"""Typed wire protocol for the realtime socket.

Every frame is ``{"event": <name>, "data": <payload>}``. Inbound frames are
decoded exactly once, by :func:`decode_event`, into one of the closed set of
variants below; anything else raises :class:`ProtocolError`. Outbound frames
are produced from the ``Outbound*`` models or the payload builders at the
bottom of the module.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Iterable, Literal, Union

from pydantic import ConfigDict, Field, TypeAdapter, ValidationError

from app.models.enums import CallType
from app.schemas import CallLogRead, FriendRequestNotice, MessageRead, PublicUser, WireModel

UserId = Annotated[str, Field(min_length=1, max_length=64)]


class ProtocolError(ValueError):
    """Raised when an inbound frame is not a valid event."""


def envelope(event: str, data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class InboundEvent(WireModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CallUser(InboundEvent):
    event: Literal["call-user"] = "call-user"
    to: UserId
    offer: Any
    call_type: CallType


class AnswerCall(InboundEvent):
    event: Literal["answer-call"] = "answer-call"
    to: UserId
    answer: Any
    call_id: str


class DeclineCall(InboundEvent):
    event: Literal["decline-call"] = "decline-call"
    to: UserId
    call_id: str


class Hangup(InboundEvent):
    event: Literal["hangup"] = "hangup"
    to: UserId
    call_id: str


class RenegotiateCall(InboundEvent):
    event: Literal["renegotiate-call"] = "renegotiate-call"
    to: UserId
    offer: Any
    call_id: str


class IceCandidate(InboundEvent):
    event: Literal["ice-candidate"] = "ice-candidate"
    to: UserId
    candidate: Any
    # Candidates can be gathered before the call id reaches the client.
    call_id: str | None = None


class Typing(InboundEvent):
    event: Literal["typing"] = "typing"
    to: UserId


class StopTyping(InboundEvent):
    event: Literal["stop-typing"] = "stop-typing"
    to: UserId


class MarkMessagesAsSeen(InboundEvent):
    event: Literal["markMessagesAsSeen"] = "markMessagesAsSeen"
    conversation_id: str
    user_id_of_sender: UserId


class MarkMessagesAsDelivered(InboundEvent):
    event: Literal["markMessagesAsDelivered"] = "markMessagesAsDelivered"
    conversation_id: str
    user_id_of_sender: UserId


class FetchCallLogs(InboundEvent):
    event: Literal["fetchCallLogs"] = "fetchCallLogs"


class Ping(InboundEvent):
    event: Literal["ping"] = "ping"


Inbound = Annotated[
    Union[
        CallUser,
        AnswerCall,
        DeclineCall,
        Hangup,
        RenegotiateCall,
        IceCandidate,
        Typing,
        StopTyping,
        MarkMessagesAsSeen,
        MarkMessagesAsDelivered,
        FetchCallLogs,
        Ping,
    ],
    Field(discriminator="event"),
]

_inbound_adapter = TypeAdapter(Inbound)

INBOUND_EVENTS: frozenset[str] = frozenset(
    variant.model_fields["event"].default
    for variant in (
        CallUser,
        AnswerCall,
        DeclineCall,
        Hangup,
        RenegotiateCall,
        IceCandidate,
        Typing,
        StopTyping,
        MarkMessagesAsSeen,
        MarkMessagesAsDelivered,
        FetchCallLogs,
        Ping,
    )
)


def _describe(name: str, exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item not in (name, "event"))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid payload"


def decode_event(frame: Any) -> InboundEvent:
    """Validate a raw inbound frame and return its typed variant."""

    if not isinstance(frame, dict):
        raise ProtocolError("Frame must be a JSON object")
    unknown_keys = set(frame) - {"event", "data"}
    if unknown_keys:
        raise ProtocolError(f"Unexpected frame keys: {', '.join(sorted(unknown_keys))}")

    name = frame.get("event")
    if not isinstance(name, str) or name not in INBOUND_EVENTS:
        raise ProtocolError(f"Unknown event: {name!r}")

    data = frame.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError(f"{name}: data must be a JSON object")
    if "event" in data:
        raise ProtocolError(f"{name}: data must not carry an event name")

    try:
        return _inbound_adapter.validate_python({**data, "event": name})
    except ValidationError as exc:
        raise ProtocolError(f"{name}: {_describe(name, exc)}") from exc


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


class OutboundEvent(WireModel):
    event: ClassVar[str]

    def frame(self) -> dict[str, Any]:
        return envelope(self.event, self.model_dump(mode="json", by_alias=True, exclude_none=True))


class IncomingCallNotice(OutboundEvent):
    event: ClassVar[str] = "incoming-call"

    from_: PublicUser = Field(alias="from")
    offer: Any
    call_id: str
    call_type: CallType


class UserOfflineNotice(OutboundEvent):
    event: ClassVar[str] = "user-offline"

    user_id: str


class CallAcceptedNotice(OutboundEvent):
    event: ClassVar[str] = "call-accepted"

    from_: str = Field(alias="from")
    answer: Any
    call_id: str


class CallAnsweredElsewhereNotice(OutboundEvent):
    event: ClassVar[str] = "call-answered-elsewhere"

    call_id: str


class CallDeclinedNotice(OutboundEvent):
    event: ClassVar[str] = "call-declined"

    from_: str = Field(alias="from")
    call_id: str


class CallDeclinedElsewhereNotice(OutboundEvent):
    event: ClassVar[str] = "call-declined-elsewhere"

    call_id: str


class HangupNotice(OutboundEvent):
    event: ClassVar[str] = "hangup"

    from_: str = Field(alias="from")
    call_id: str


class RenegotiateNotice(OutboundEvent):
    event: ClassVar[str] = "renegotiate-call"

    from_: str = Field(alias="from")
    offer: Any
    call_id: str


class IceCandidateNotice(OutboundEvent):
    event: ClassVar[str] = "ice-candidate"

    from_: str = Field(alias="from")
    candidate: Any
    call_id: str | None = None


class TypingNotice(OutboundEvent):
    event: ClassVar[str] = "typing"

    from_: str = Field(alias="from")


class StopTypingNotice(OutboundEvent):
    event: ClassVar[str] = "stop-typing"

    from_: str = Field(alias="from")


class MessagesSeenNotice(OutboundEvent):
    event: ClassVar[str] = "messagesSeen"

    conversation_id: str


class MessagesDeliveredNotice(OutboundEvent):
    """Either one conversation was acknowledged, or a receiver reconnected."""

    event: ClassVar[str] = "messagesDelivered"

    conversation_id: str | None = None
    receiver_id: str | None = None
    conversation_ids: list[str] | None = None


class CallFailedNotice(OutboundEvent):
    event: ClassVar[str] = "call-failed"

    message: str
    reason: str
    call_id: str | None = None


class ErrorNotice(OutboundEvent):
    event: ClassVar[str] = "error"

    detail: str


def online_users(user_ids: Iterable[str]) -> dict[str, Any]:
    return envelope("getOnlineUsers", list(user_ids))


def new_message(message: MessageRead) -> dict[str, Any]:
    return envelope("newMessage", message.to_wire())


def new_call_log(call_log: CallLogRead, viewer_id: str) -> dict[str, Any]:
    return envelope("newCallLog", call_log.for_viewer(viewer_id))


def call_logs(logs: Iterable[CallLogRead], viewer_id: str) -> dict[str, Any]:
    return envelope("callLogs", [call_log.for_viewer(viewer_id) for call_log in logs])


def friend_request_received(notice: FriendRequestNotice) -> dict[str, Any]:
    return envelope("friendRequestReceived", notice.to_wire())


def friend_request_accepted(user: PublicUser) -> dict[str, Any]:
    return envelope("friendRequestAccepted", user.to_wire())


def ping() -> dict[str, Any]:
    return envelope("ping", {})


def pong() -> dict[str, Any]:
    return envelope("pong", {})
