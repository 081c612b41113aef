from __future__ import annotations

import time

import anyio
import pytest
from sqlalchemy import select

from app.config import get_settings
from app.database import PersistenceError, run_in_session
from app.models import CallLog, Message, User
from app.services import call_logs as call_log_store
from app.services import messages as message_store
from genchat.realtime.managers import build_realtime

TIMEOUT = 0.05
STALL = 0.2


@pytest.fixture()
def people(make_user) -> None:
    make_user("xavier", user_id="x")
    make_user("yara", user_id="y")


@pytest.fixture()
def impatient(session_factory):
    settings = get_settings().model_copy(update={"persistence_timeout_seconds": TIMEOUT})
    return build_realtime(session_factory, settings=settings)


def _stalled(operation):
    def wrapper(db, *args):
        time.sleep(STALL)
        return operation(db, *args)

    return wrapper


async def _let_worker_finish() -> None:
    await anyio.sleep(STALL * 2)


@pytest.mark.anyio("asyncio")
async def test_timed_out_operation_is_rolled_back(session_factory) -> None:
    def add_user(db, username: str) -> str:
        user = User(username=username)
        db.add(user)
        time.sleep(STALL)
        db.commit()
        return user.id

    with pytest.raises(PersistenceError, match="timed out"):
        await run_in_session(session_factory, add_user, "late", timeout=TIMEOUT)
    await _let_worker_finish()

    with session_factory() as session:
        assert session.execute(select(User).where(User.username == "late")).first() is None


@pytest.mark.anyio("asyncio")
async def test_operation_within_deadline_commits(session_factory) -> None:
    def add_user(db, username: str) -> str:
        user = User(username=username)
        db.add(user)
        db.commit()
        return user.id

    user_id = await run_in_session(session_factory, add_user, "prompt", timeout=1.0)

    with session_factory() as session:
        assert session.get(User, user_id).username == "prompt"


@pytest.mark.anyio("asyncio")
async def test_send_that_times_out_leaves_no_message(
    impatient, people, make_socket, session_factory, monkeypatch
) -> None:
    monkeypatch.setattr(message_store, "create_message", _stalled(message_store.create_message))
    y_socket = make_socket()
    await impatient.presence.register("y", y_socket)

    with pytest.raises(PersistenceError):
        await impatient.messages.send_message("x", "y", text="hi")
    await _let_worker_finish()

    with session_factory() as session:
        assert session.execute(select(Message)).first() is None
    assert y_socket.events("newMessage") == []


@pytest.mark.anyio("asyncio")
async def test_call_that_times_out_leaves_no_log(
    impatient, people, make_socket, session_factory, monkeypatch
) -> None:
    monkeypatch.setattr(call_log_store, "create_call_log", _stalled(call_log_store.create_call_log))
    x_socket, y_socket = make_socket(), make_socket()
    x_session = await impatient.gateway.connect("x", x_socket)
    await impatient.gateway.connect("y", y_socket)

    await impatient.gateway.handle(
        x_session,
        {"event": "call-user", "data": {"to": "y", "offer": {"sdp": "o"}, "callType": "audio"}},
    )
    await _let_worker_finish()

    assert len(x_socket.events("call-failed")) == 1
    assert y_socket.events("incoming-call") == []
    with session_factory() as session:
        assert session.execute(select(CallLog)).first() is None
