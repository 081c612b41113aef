"""Construction and lifecycle of the realtime services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from app.config import Settings, get_settings

from ..calls.signaling import CallSignalingService
from ..calls.sync import CallLogSynchronizer
from ..messaging.pipeline import MessageDeliveryPipeline
from .gateway import RealtimeGateway
from .indicators import TypingRelay
from .presence import PresenceRegistry

logger = logging.getLogger(__name__)


@dataclass
class RealtimeServices:
    """Everything one server process needs to serve sockets."""

    presence: PresenceRegistry
    typing: TypingRelay
    messages: MessageDeliveryPipeline
    call_logs: CallLogSynchronizer
    calls: CallSignalingService
    gateway: RealtimeGateway

    async def shutdown(self) -> None:
        await self.presence.close_all()


def build_realtime(
    session_factory: Callable[[], Session] | None = None,
    *,
    settings: Settings | None = None,
) -> RealtimeServices:
    """Wire a fresh set of services around one presence registry."""

    settings = settings or get_settings()
    if session_factory is None:
        from app.database import SessionLocal

        session_factory = SessionLocal

    timeout = settings.persistence_timeout_seconds
    presence = PresenceRegistry()
    typing = TypingRelay(presence)
    messages = MessageDeliveryPipeline(
        presence,
        session_factory,
        timeout=timeout,
        max_length=settings.chat_message_max_length,
    )
    call_logs = CallLogSynchronizer(presence, session_factory, timeout=timeout)
    calls = CallSignalingService(presence, call_logs, session_factory, timeout=timeout)
    presence.on_register(messages.reconcile_pending)
    gateway = RealtimeGateway(presence, typing, messages, calls, call_logs)
    return RealtimeServices(
        presence=presence,
        typing=typing,
        messages=messages,
        call_logs=call_logs,
        calls=calls,
        gateway=gateway,
    )


_services: RealtimeServices = build_realtime()


def install_realtime(services: RealtimeServices) -> RealtimeServices:
    """Replace the process-wide services, returning the previous ones."""

    global _services
    previous, _services = _services, services
    return previous


async def startup_realtime() -> None:
    logger.info("Realtime services ready")


async def shutdown_realtime() -> None:
    await _services.shutdown()
    logger.info("Realtime services stopped")


# Convenience accessors exposed to the FastAPI layer ----------------------


def get_realtime() -> RealtimeServices:
    return _services


def get_presence_registry() -> PresenceRegistry:
    return _services.presence


def get_message_pipeline() -> MessageDeliveryPipeline:
    return _services.messages


def get_gateway() -> RealtimeGateway:
    return _services.gateway


__all__ = [
    "RealtimeServices",
    "build_realtime",
    "install_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "get_realtime",
    "get_presence_registry",
    "get_message_pipeline",
    "get_gateway",
]
