from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from app.database import PersistenceError
from app.models import CallLog, CallStatus
from genchat.calls import signaling as signaling_module
from genchat.calls.signaling import CallSignalingService, SignalOutcome

OFFER = {"type": "offer", "sdp": "v=0 offer"}
ANSWER = {"type": "answer", "sdp": "v=0 answer"}


@pytest.fixture()
def users(make_user) -> None:
    make_user("xavier", user_id="x")
    make_user("yara", user_id="y")
    make_user("zoe", user_id="z")


def _call_user(to: str, call_type: str = "video") -> dict:
    return {"event": "call-user", "data": {"to": to, "offer": OFFER, "callType": call_type}}


def _call_logs(session_factory) -> list[CallLog]:
    with session_factory() as session:
        return list(session.execute(select(CallLog)).scalars())


async def _ring(realtime, make_socket):
    """x calls y; returns the sockets, sessions and the new call id."""

    x_socket, y_socket = make_socket(), make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)
    y_session = await realtime.gateway.connect("y", y_socket)
    await realtime.gateway.handle(x_session, _call_user("y"))
    call_id = y_socket.data("incoming-call")[0]["callId"]
    return x_socket, y_socket, x_session, y_session, call_id


@pytest.mark.anyio("asyncio")
async def test_calling_offline_user_reports_offline_and_writes_nothing(
    realtime, users, make_socket, session_factory
) -> None:
    x_socket = make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)

    await realtime.gateway.handle(x_session, _call_user("y"))

    assert x_socket.data("user-offline") == [{"userId": "y"}]
    assert x_socket.events("newCallLog") == []
    assert _call_logs(session_factory) == []


@pytest.mark.anyio("asyncio")
async def test_calling_online_user_rings_and_logs_missed(
    realtime, users, make_socket, session_factory
) -> None:
    x_socket, y_socket, _, _, call_id = await _ring(realtime, make_socket)

    incoming = y_socket.data("incoming-call")
    assert len(incoming) == 1
    assert incoming[0]["from"]["id"] == "x"
    assert incoming[0]["from"]["username"] == "xavier"
    assert incoming[0]["offer"] == OFFER
    assert incoming[0]["callType"] == "video"

    (log,) = _call_logs(session_factory)
    assert log.id == call_id
    assert log.status is CallStatus.MISSED
    assert log.duration == 0

    (caller_view,) = x_socket.data("newCallLog")
    (callee_view,) = y_socket.data("newCallLog")
    assert caller_view["status"] == callee_view["status"] == "missed"
    assert caller_view["id"] == callee_view["id"] == call_id
    assert caller_view["receiverId"]["id"] == "y"
    assert callee_view["receiverId"]["id"] == "x"
    assert "password" not in caller_view["caller"]


@pytest.mark.anyio("asyncio")
async def test_hangup_while_missed_finalizes_answered(
    realtime, users, make_socket, session_factory
) -> None:
    x_socket, y_socket, _, y_session, call_id = await _ring(realtime, make_socket)
    x_socket.sent.clear()
    y_socket.sent.clear()

    await realtime.gateway.handle(y_session, {"event": "hangup", "data": {"to": "x", "callId": call_id}})

    assert x_socket.data("hangup") == [{"from": "y", "callId": call_id}]
    (log,) = _call_logs(session_factory)
    assert log.status is CallStatus.ANSWERED
    assert log.duration >= 0
    assert x_socket.data("newCallLog")[0]["status"] == "answered"
    assert y_socket.data("newCallLog")[0]["status"] == "answered"


@pytest.mark.anyio("asyncio")
async def test_hangup_duration_counts_from_log_creation(
    realtime, users, make_socket, session_factory
) -> None:
    *_, call_id = await _ring(realtime, make_socket)
    service = CallSignalingService(
        realtime.presence,
        realtime.call_logs,
        session_factory,
        clock=lambda: datetime.now(timezone.utc) + timedelta(seconds=90),
    )

    result = await service.hangup("x", "y", call_id)

    assert result.outcome is SignalOutcome.RELAYED
    (log,) = _call_logs(session_factory)
    assert 90 <= log.duration < 100


@pytest.mark.anyio("asyncio")
async def test_second_hangup_leaves_answered_log_alone(
    realtime, users, make_socket, session_factory
) -> None:
    x_socket, y_socket, x_session, y_session, call_id = await _ring(realtime, make_socket)
    await realtime.gateway.handle(y_session, {"event": "hangup", "data": {"to": "x", "callId": call_id}})
    (first,) = _call_logs(session_factory)
    y_socket.sent.clear()

    await realtime.gateway.handle(x_session, {"event": "hangup", "data": {"to": "y", "callId": call_id}})

    (second,) = _call_logs(session_factory)
    assert second.status is CallStatus.ANSWERED
    assert second.duration == first.duration
    assert y_socket.data("hangup") == [{"from": "x", "callId": call_id}]
    assert y_socket.events("newCallLog") == []


@pytest.mark.anyio("asyncio")
async def test_answer_dismisses_ringing_on_other_devices(realtime, users, make_socket) -> None:
    x_socket = make_socket()
    phone, laptop = make_socket(), make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)
    phone_session = await realtime.gateway.connect("y", phone)
    await realtime.gateway.connect("y", laptop)

    await realtime.gateway.handle(x_session, _call_user("y"))
    assert len(phone.events("incoming-call")) == 1
    assert len(laptop.events("incoming-call")) == 1
    call_id = phone.data("incoming-call")[0]["callId"]

    await realtime.gateway.handle(
        phone_session,
        {"event": "answer-call", "data": {"to": "x", "answer": ANSWER, "callId": call_id}},
    )

    assert x_socket.data("call-accepted") == [{"from": "y", "answer": ANSWER, "callId": call_id}]
    assert laptop.data("call-answered-elsewhere") == [{"callId": call_id}]
    assert phone.events("call-answered-elsewhere") == []


@pytest.mark.anyio("asyncio")
async def test_accept_does_not_resolve_the_log(realtime, users, make_socket, session_factory) -> None:
    _, _, _, y_session, call_id = await _ring(realtime, make_socket)

    await realtime.gateway.handle(
        y_session,
        {"event": "answer-call", "data": {"to": "x", "answer": ANSWER, "callId": call_id}},
    )

    (log,) = _call_logs(session_factory)
    assert log.status is CallStatus.MISSED


@pytest.mark.anyio("asyncio")
async def test_answer_to_departed_caller_reports_offline(realtime, users, make_socket) -> None:
    x_socket, y_socket, x_session, y_session, call_id = await _ring(realtime, make_socket)
    await realtime.gateway.disconnect(x_session)

    await realtime.gateway.handle(
        y_session,
        {"event": "answer-call", "data": {"to": "x", "answer": ANSWER, "callId": call_id}},
    )

    assert y_socket.data("user-offline") == [{"userId": "x"}]


@pytest.mark.anyio("asyncio")
async def test_decline_resolves_log_and_notifies_everyone(
    realtime, users, make_socket, session_factory
) -> None:
    x_socket = make_socket()
    phone, laptop = make_socket(), make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)
    phone_session = await realtime.gateway.connect("y", phone)
    await realtime.gateway.connect("y", laptop)
    await realtime.gateway.handle(x_session, _call_user("y", "audio"))
    call_id = phone.data("incoming-call")[0]["callId"]
    x_socket.sent.clear()

    await realtime.gateway.handle(phone_session, {"event": "decline-call", "data": {"to": "x", "callId": call_id}})

    assert x_socket.data("call-declined") == [{"from": "y", "callId": call_id}]
    assert laptop.data("call-declined-elsewhere") == [{"callId": call_id}]
    assert phone.events("call-declined-elsewhere") == []
    (log,) = _call_logs(session_factory)
    assert log.status is CallStatus.DECLINED
    assert x_socket.data("newCallLog")[0]["status"] == "declined"


@pytest.mark.anyio("asyncio")
async def test_hangup_after_decline_keeps_declined(realtime, users, make_socket, session_factory) -> None:
    _, _, x_session, y_session, call_id = await _ring(realtime, make_socket)
    await realtime.gateway.handle(y_session, {"event": "decline-call", "data": {"to": "x", "callId": call_id}})

    await realtime.gateway.handle(x_session, {"event": "hangup", "data": {"to": "y", "callId": call_id}})

    (log,) = _call_logs(session_factory)
    assert log.status is CallStatus.DECLINED
    assert log.duration == 0


@pytest.mark.anyio("asyncio")
async def test_outsider_cannot_resolve_a_call(realtime, users, make_socket, session_factory) -> None:
    *_, call_id = await _ring(realtime, make_socket)

    await realtime.calls.hangup("z", "x", call_id)
    await realtime.calls.decline("z", "unused-session", "x", call_id)

    (log,) = _call_logs(session_factory)
    assert log.status is CallStatus.MISSED


@pytest.mark.anyio("asyncio")
async def test_calling_yourself_is_rejected(realtime, users, make_socket, session_factory) -> None:
    x_socket = make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)

    await realtime.gateway.handle(x_session, _call_user("x"))

    (failure,) = x_socket.data("call-failed")
    assert failure["message"] == "Could not initiate call"
    assert _call_logs(session_factory) == []


@pytest.mark.anyio("asyncio")
async def test_failed_log_write_reports_call_failed(
    realtime, users, make_socket, session_factory, monkeypatch
) -> None:
    async def unavailable(*args, **kwargs):
        raise PersistenceError("database unavailable")

    x_socket, y_socket = make_socket(), make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)
    await realtime.gateway.connect("y", y_socket)
    monkeypatch.setattr(signaling_module, "run_in_session", unavailable)

    await realtime.gateway.handle(x_session, _call_user("y"))

    assert x_socket.data("call-failed") == [
        {"message": "Could not initiate call", "reason": "database unavailable"}
    ]
    assert y_socket.events("incoming-call") == []
    assert _call_logs(session_factory) == []


@pytest.mark.anyio("asyncio")
async def test_failed_decline_write_still_relays(realtime, users, make_socket, monkeypatch) -> None:
    x_socket, y_socket, _, y_session, call_id = await _ring(realtime, make_socket)

    async def unavailable(*args, **kwargs):
        raise PersistenceError("database unavailable")

    monkeypatch.setattr(signaling_module, "run_in_session", unavailable)

    await realtime.gateway.handle(y_session, {"event": "decline-call", "data": {"to": "x", "callId": call_id}})

    assert x_socket.data("call-declined") == [{"from": "y", "callId": call_id}]
    (failure,) = y_socket.data("call-failed")
    assert failure["callId"] == call_id


@pytest.mark.anyio("asyncio")
async def test_renegotiate_and_ice_are_relayed_verbatim(realtime, users, make_socket) -> None:
    x_socket, y_socket, x_session, _, call_id = await _ring(realtime, make_socket)
    candidate = {"candidate": "candidate:1 1 udp 2122260223 10.0.0.1 5000 typ host", "sdpMid": "0"}

    await realtime.gateway.handle(
        x_session,
        {"event": "renegotiate-call", "data": {"to": "y", "offer": OFFER, "callId": call_id}},
    )
    await realtime.gateway.handle(
        x_session, {"event": "ice-candidate", "data": {"to": "y", "candidate": candidate}}
    )

    assert y_socket.data("renegotiate-call") == [{"from": "x", "offer": OFFER, "callId": call_id}]
    assert y_socket.data("ice-candidate") == [{"from": "x", "candidate": candidate}]


@pytest.mark.anyio("asyncio")
async def test_ice_to_offline_peer_is_dropped_silently(realtime, users, make_socket) -> None:
    x_socket = make_socket()
    x_session = await realtime.gateway.connect("x", x_socket)
    x_socket.sent.clear()

    await realtime.gateway.handle(
        x_session, {"event": "ice-candidate", "data": {"to": "y", "candidate": {}, "callId": "c"}}
    )

    assert x_socket.sent == []
