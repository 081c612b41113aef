from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.main import app
from genchat.realtime import managers


def test_build_realtime_wires_one_registry(session_factory) -> None:
    services = managers.build_realtime(session_factory)

    assert services.typing._presence is services.presence
    assert services.messages._presence is services.presence
    assert services.calls._presence is services.presence
    assert services.presence._register_hooks == [services.messages.reconcile_pending]


def test_accessors_follow_installed_services(realtime) -> None:
    assert managers.get_realtime() is realtime
    assert managers.get_presence_registry() is realtime.presence
    assert managers.get_message_pipeline() is realtime.messages
    assert managers.get_gateway() is realtime.gateway


@pytest.mark.anyio("asyncio")
async def test_shutdown_closes_open_sessions(realtime, make_socket) -> None:
    socket = make_socket()
    await realtime.presence.register("u1", socket)

    await managers.shutdown_realtime()

    assert socket.closed_with == 1001
    assert realtime.presence.online_users() == []


def test_app_lifespan_closes_sessions_on_exit(realtime, make_socket) -> None:
    socket = make_socket()

    with TestClient(app) as client:
        client.portal.call(realtime.presence.register, "u1", socket)
        assert socket.closed_with is None

    assert socket.closed_with == 1001
