"""Metric definitions for the realtime core."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events processed by the socket gateway.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket sessions handled locally.",
    label_names=("scope",),
)

call_status_transitions_total = registry.counter(
    "call_status_transitions_total",
    "Call log status changes written by the signaling service.",
    label_names=("status",),
)

message_deliveries_total = registry.counter(
    "message_deliveries_total",
    "Messages stored by the delivery pipeline, by initial delivery outcome.",
    label_names=("outcome",),
)

persistence_failures_total = registry.counter(
    "persistence_failures_total",
    "Store operations issued by realtime handlers that failed or timed out.",
    label_names=("operation",),
)
