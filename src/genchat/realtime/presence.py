"""Presence registry: which users are online, and on which sessions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import realtime_connections, realtime_events_total

from .protocol import envelope, online_users

logger = logging.getLogger(__name__)

RegisterHook = Callable[[str], Awaitable[None]]


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send a frame, returning ``False`` instead of raising if the socket is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Failed to send websocket message: %s", exc)
        return False


@dataclass(eq=False)
class Session:
    """One live socket of one user."""

    user_id: str
    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class PresenceRegistry:
    """Maps each user to the set of sessions they are connected through.

    All mutations of the maps happen under a single lock; sends happen outside
    of it on snapshots, so a slow socket never blocks registration.
    """

    def __init__(self) -> None:
        self._user_sessions: Dict[str, Set[str]] = defaultdict(set)
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._register_hooks: list[RegisterHook] = []

    def on_register(self, hook: RegisterHook) -> None:
        """Run ``hook(user_id)`` after every successful registration."""

        self._register_hooks.append(hook)

    async def register(
        self,
        user_id: str,
        websocket: WebSocket,
        *,
        session_id: str | None = None,
    ) -> Session:
        """Make ``websocket`` addressable as a session of ``user_id``.

        Registering the same session id again is a no-op for the maps. A
        session id that belonged to another user is moved.
        """

        async with self._lock:
            existing = self._sessions.get(session_id) if session_id else None
            if existing is not None and existing.user_id == user_id:
                session = existing
                session.websocket = websocket
            else:
                if existing is not None:
                    self._detach(existing)
                session = Session(user_id=user_id, websocket=websocket)
                if session_id:
                    session.id = session_id
                self._sessions[session.id] = session
                self._user_sessions[user_id].add(session.id)
                realtime_connections.labels("sessions").inc()
            roster = self._roster()

        logger.info("Session %s registered for user %s", session.id, user_id)
        await self._broadcast_frame(online_users(roster))
        for hook in list(self._register_hooks):
            try:
                await hook(user_id)
            except Exception:
                logger.exception("Register hook failed for user %s", user_id)
        return session

    def _detach(self, session: Session) -> bool:
        """Drop ``session`` from the maps. Returns whether its user went offline."""

        self._sessions.pop(session.id, None)
        sessions = self._user_sessions.get(session.user_id)
        if sessions is None or session.id not in sessions:
            return False
        sessions.discard(session.id)
        realtime_connections.labels("sessions").dec()
        if not sessions:
            self._user_sessions.pop(session.user_id, None)
            return True
        return False

    async def deregister(self, session_id: str) -> Session | None:
        """Forget a session. Returns it, or ``None`` if it was not registered."""

        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            went_offline = self._detach(session)
            roster = self._roster()

        logger.info("Session %s of user %s deregistered", session_id, session.user_id)
        if went_offline:
            await self._broadcast_frame(online_users(roster))
        return session

    def _roster(self) -> list[str]:
        return sorted(self._user_sessions)

    def sessions_for(self, user_id: str) -> frozenset[str]:
        return frozenset(self._user_sessions.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_sessions.get(user_id))

    def online_users(self) -> list[str]:
        return self._roster()

    async def emit(
        self,
        user_id: str,
        event: str,
        data: Any,
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        """Send one event to every session of ``user_id``. Returns the send count."""

        return await self.send_frame(user_id, envelope(event, data), exclude=exclude)

    async def send_frame(
        self,
        user_id: str,
        frame: dict[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        excluded = set(exclude)
        targets = [
            self._sessions[session_id].websocket
            for session_id in list(self._user_sessions.get(user_id, ()))
            if session_id not in excluded and session_id in self._sessions
        ]
        delivered = 0
        for websocket in targets:
            if await safe_send_json(websocket, frame):
                delivered += 1
        if targets:
            realtime_events_total.labels("user", "out", frame.get("event", "unknown")).inc()
        return delivered

    async def send_to_session(self, session_id: str, frame: dict[str, Any]) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        sent = await safe_send_json(session.websocket, frame)
        if sent:
            realtime_events_total.labels("session", "out", frame.get("event", "unknown")).inc()
        return sent

    async def _broadcast_frame(self, frame: dict[str, Any]) -> None:
        targets = [session.websocket for session in list(self._sessions.values())]
        for websocket in targets:
            await safe_send_json(websocket, frame)
        realtime_events_total.labels("broadcast", "out", frame.get("event", "unknown")).inc()

    async def close_all(self, code: int = 1001) -> None:
        """Close every socket and clear the maps. Used at shutdown."""

        async with self._lock:
            sessions = list(self._sessions.values())
            for session in sessions:
                self._detach(session)
        for session in sessions:
            if session.websocket.application_state == WebSocketState.CONNECTED:
                try:
                    await session.websocket.close(code=code)
                except RuntimeError:
                    continue
