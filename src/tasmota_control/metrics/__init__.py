"""Metrics module."""

from .registry import (
    record_command,
    record_command_latency,
    record_device_connect,
    record_discovery,
    record_inbound_message,
    record_managed_devices,
    record_pending_correlations,
    record_reconnection,
    record_reply_timeout,
    record_session_state,
    record_state_change,
    start_metrics_server,
)

__all__ = [
    "record_command",
    "record_command_latency",
    "record_device_connect",
    "record_discovery",
    "record_inbound_message",
    "record_managed_devices",
    "record_pending_correlations",
    "record_reconnection",
    "record_reply_timeout",
    "record_session_state",
    "record_state_change",
    "start_metrics_server",
]
