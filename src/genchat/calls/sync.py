"""Pushes populated call logs to both participants."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.database import PersistenceError, run_in_session
from app.monitoring.metrics import persistence_failures_total
from app.schemas import CallLogRead
from app.services import call_logs as call_log_store

from ..realtime.presence import PresenceRegistry
from ..realtime.protocol import call_logs, new_call_log

logger = logging.getLogger(__name__)


class CallLogSynchronizer:
    """Sends each participant a ``newCallLog`` whose ``receiverId`` is the other party."""

    def __init__(
        self,
        presence: PresenceRegistry,
        session_factory: Callable[[], Session],
        *,
        timeout: float | None = None,
    ) -> None:
        self._presence = presence
        self._session_factory = session_factory
        self._timeout = timeout

    async def publish(self, call_log: CallLogRead) -> None:
        caller_id = call_log.caller.id
        callee_id = call_log.callee.id
        await self._presence.send_frame(caller_id, new_call_log(call_log, caller_id))
        await self._presence.send_frame(callee_id, new_call_log(call_log, callee_id))

    async def emit_call_log_update(self, call_id: str) -> bool:
        """Fetch and publish a call log.

        A missing log or a store failure is logged and reported as ``False``;
        it never propagates to the signaling handler that asked for the update.
        """

        try:
            call_log = await run_in_session(
                self._session_factory,
                call_log_store.get_call_log_view,
                call_id,
                timeout=self._timeout,
            )
        except PersistenceError:
            persistence_failures_total.labels("get_call_log").inc()
            logger.warning(
                "Could not load call log %s for broadcast",
                call_id,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return False
        if call_log is None:
            logger.debug("Call log %s not found; nothing to broadcast", call_id)
            return False
        await self.publish(call_log)
        return True

    async def history(self, user_id: str) -> list[CallLogRead]:
        """Call logs of ``user_id``, newest first. Raises :class:`PersistenceError`."""

        try:
            return await run_in_session(
                self._session_factory,
                call_log_store.list_call_logs,
                user_id,
                timeout=self._timeout,
            )
        except PersistenceError:
            persistence_failures_total.labels("list_call_logs").inc()
            raise

    async def send_history(self, user_id: str, session_id: str) -> bool:
        logs = await self.history(user_id)
        return await self._presence.send_to_session(session_id, call_logs(logs, user_id))
