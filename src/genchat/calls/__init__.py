"""Call signalling, call status model and call log fan-out."""

from .states import CallStatus, InvalidCallTransition, transition

__all__ = ["CallStatus", "InvalidCallTransition", "transition"]
