"""Chat message persistence and delivery."""

from .pipeline import MessageDeliveryPipeline, MessageValidationError

__all__ = ["MessageDeliveryPipeline", "MessageValidationError"]
