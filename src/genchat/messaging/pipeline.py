"""Message delivery pipeline.

Messages are stored with their text encrypted at rest (see
:class:`app.models.EncryptedText`). A message is flagged ``delivered`` when its
receiver had at least one registered session at send time; otherwise it stays
pending until the receiver registers again and :meth:`reconcile_pending` runs.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.database import PersistenceError, run_in_session
from app.monitoring.metrics import message_deliveries_total, persistence_failures_total
from app.schemas import MessageRead
from app.services import messages as message_store

from ..realtime.presence import PresenceRegistry
from ..realtime.protocol import MessagesDeliveredNotice, MessagesSeenNotice, new_message

logger = logging.getLogger(__name__)


class MessageValidationError(ValueError):
    """Raised for messages that must not be stored."""


class MessageDeliveryPipeline:
    def __init__(
        self,
        presence: PresenceRegistry,
        session_factory: Callable[[], Session],
        *,
        timeout: float | None = None,
        max_length: int = 4000,
    ) -> None:
        self._presence = presence
        self._session_factory = session_factory
        self._timeout = timeout
        self._max_length = max_length

    async def _run(self, name: str, operation, *args):
        try:
            return await run_in_session(self._session_factory, operation, *args, timeout=self._timeout)
        except PersistenceError:
            persistence_failures_total.labels(name).inc()
            logger.warning(
                "Message store operation %s failed",
                name,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise

    def _validate(self, sender_id: str, receiver_id: str, text: str | None, image: str | None) -> None:
        if sender_id == receiver_id:
            raise MessageValidationError("Cannot send a message to yourself")
        if not (text or "").strip() and not image:
            raise MessageValidationError("Message must contain text or an image")
        if text is not None and len(text) > self._max_length:
            raise MessageValidationError(f"Message text exceeds {self._max_length} characters")

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        text: str | None = None,
        image: str | None = None,
    ) -> MessageRead:
        """Store a message and push it to the receiver's sessions when online.

        Raises :class:`MessageValidationError`,
        :class:`app.services.messages.RecipientNotFoundError` or
        :class:`app.database.PersistenceError`; nothing is pushed on failure.
        """

        self._validate(sender_id, receiver_id, text, image)
        delivered = self._presence.is_online(receiver_id)
        message = await self._run(
            "send_message",
            message_store.create_message,
            sender_id,
            receiver_id,
            text,
            image,
            delivered,
        )
        message_deliveries_total.labels("delivered" if delivered else "pending").inc()
        if delivered:
            await self._presence.send_frame(receiver_id, new_message(message))
        return message

    async def mark_as_seen(self, viewer_id: str, conversation_id: str, sender_id: str) -> int:
        """Flag the sender's messages to ``viewer_id`` as seen.

        The sender is notified only when at least one message changed.
        """

        changed = await self._run(
            "mark_seen", message_store.mark_seen, conversation_id, sender_id, viewer_id
        )
        if changed:
            notice = MessagesSeenNotice(conversation_id=conversation_id)
            await self._presence.send_frame(sender_id, notice.frame())
        return changed

    async def mark_as_delivered(self, viewer_id: str, conversation_id: str, sender_id: str) -> int:
        changed = await self._run(
            "mark_delivered", message_store.mark_delivered, conversation_id, sender_id, viewer_id
        )
        if changed:
            notice = MessagesDeliveredNotice(conversation_id=conversation_id, receiver_id=viewer_id)
            await self._presence.send_frame(sender_id, notice.frame())
        return changed

    async def reconcile_pending(self, receiver_id: str) -> dict[str, list[str]]:
        """Deliver everything that was waiting for ``receiver_id``.

        Runs as a presence registration hook. Each original sender that is
        online gets one ``messagesDelivered`` notice.
        """

        try:
            by_sender = await self._run("deliver_pending", message_store.deliver_pending, receiver_id)
        except PersistenceError:
            return {}

        for sender_id, conversation_ids in by_sender.items():
            notice = MessagesDeliveredNotice(receiver_id=receiver_id, conversation_ids=conversation_ids)
            await self._presence.send_frame(sender_id, notice.frame())
        if by_sender:
            logger.debug(
                "Delivered pending messages for %s from %d sender(s)", receiver_id, len(by_sender)
            )
        return by_sender
