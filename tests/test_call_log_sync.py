from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.database import PersistenceError
from app.models import CallLog, CallStatus, CallType
from app.services import call_logs as call_log_store
from genchat.calls import sync as sync_module
from genchat.calls.states import InvalidCallTransition


@pytest.fixture()
def pair(make_user) -> tuple[str, str]:
    return make_user("caller", user_id="c1"), make_user("callee", user_id="c2")


def test_create_call_log_starts_missed(db_session, pair) -> None:
    view = call_log_store.create_call_log(db_session, "c1", "c2", CallType.AUDIO)

    assert view.status is CallStatus.MISSED
    assert view.duration == 0
    assert view.caller.id == "c1"
    assert view.callee.username == "callee"


def test_create_call_log_requires_existing_callee(db_session, pair) -> None:
    with pytest.raises(LookupError):
        call_log_store.create_call_log(db_session, "c1", "ghost", CallType.AUDIO)


def test_apply_status_is_compare_and_set(db_session, pair) -> None:
    view = call_log_store.create_call_log(db_session, "c1", "c2", CallType.VIDEO)

    assert call_log_store.apply_status(db_session, view.id, CallStatus.DECLINED, "c2") is True
    db_session.expire_all()
    with pytest.raises(InvalidCallTransition):
        call_log_store.apply_status(db_session, view.id, CallStatus.ANSWERED, "c2")
    assert call_log_store.finalize_on_hangup(db_session, view.id, datetime.now(timezone.utc), "c1") is False


def test_apply_status_for_missing_log_is_false(db_session, pair) -> None:
    assert call_log_store.apply_status(db_session, "missing", CallStatus.DECLINED, "c2") is False


def test_finalize_on_hangup_sets_duration(db_session, pair) -> None:
    view = call_log_store.create_call_log(db_session, "c1", "c2", CallType.AUDIO)
    ended = view.created_at.replace(tzinfo=timezone.utc) + timedelta(seconds=12, milliseconds=400)

    assert call_log_store.finalize_on_hangup(db_session, view.id, ended, "c2") is True

    db_session.expire_all()
    log = db_session.get(CallLog, view.id)
    assert log.status is CallStatus.ANSWERED
    assert log.duration == 12


def test_list_call_logs_newest_first(db_session, pair, make_user) -> None:
    make_user("other", user_id="c3")
    older = call_log_store.create_call_log(db_session, "c1", "c2", CallType.AUDIO)
    newer = call_log_store.create_call_log(db_session, "c3", "c1", CallType.VIDEO)
    db_session.get(CallLog, older.id).created_at = datetime(2020, 1, 1, tzinfo=timezone.utc)
    db_session.commit()

    logs = call_log_store.list_call_logs(db_session, "c1")

    assert [log.id for log in logs] == [newer.id, older.id]
    assert [log.id for log in call_log_store.list_call_logs(db_session, "c2")] == [older.id]


@pytest.mark.anyio("asyncio")
async def test_emit_update_sends_each_party_the_other_as_receiver(
    realtime, db_session, pair, make_socket
) -> None:
    view = call_log_store.create_call_log(db_session, "c1", "c2", CallType.AUDIO)
    caller_socket, callee_socket = make_socket(), make_socket()
    await realtime.presence.register("c1", caller_socket)
    await realtime.presence.register("c2", callee_socket)

    assert await realtime.call_logs.emit_call_log_update(view.id) is True

    (caller_view,) = caller_socket.data("newCallLog")
    (callee_view,) = callee_socket.data("newCallLog")
    assert caller_view["receiverId"]["id"] == "c2"
    assert callee_view["receiverId"]["id"] == "c1"
    assert caller_view["callType"] == "audio"


@pytest.mark.anyio("asyncio")
async def test_emit_update_for_missing_log_is_a_no_op(realtime, pair, make_socket) -> None:
    socket = make_socket()
    await realtime.presence.register("c1", socket)

    assert await realtime.call_logs.emit_call_log_update("missing") is False
    assert socket.events("newCallLog") == []


@pytest.mark.anyio("asyncio")
async def test_emit_update_survives_store_failure(realtime, pair, monkeypatch) -> None:
    async def unavailable(*args, **kwargs):
        raise PersistenceError("timed out")

    monkeypatch.setattr(sync_module, "run_in_session", unavailable)

    assert await realtime.call_logs.emit_call_log_update("any") is False


@pytest.mark.anyio("asyncio")
async def test_fetch_call_logs_replies_to_requesting_session_only(
    realtime, db_session, pair, make_socket
) -> None:
    call_log_store.create_call_log(db_session, "c1", "c2", CallType.VIDEO)
    asking, other_device = make_socket(), make_socket()
    session = await realtime.gateway.connect("c2", asking)
    await realtime.gateway.connect("c2", other_device)

    await realtime.gateway.handle(session, {"event": "fetchCallLogs", "data": {}})

    (history,) = asking.data("callLogs")
    assert len(history) == 1
    assert history[0]["receiverId"]["id"] == "c1"
    assert other_device.events("callLogs") == []
