"""Synchronous persistence services used by routers and the realtime core."""

from . import call_logs, friends, messages, users

__all__ = ["call_logs", "friends", "messages", "users"]
