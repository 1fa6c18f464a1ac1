"""Prometheus metrics registry for device commands and broker sessions."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

tasmota_command_total: Final = Counter(  # type: ignore[assignment]
    "tasmota_command_total",
    "Total device commands dispatched",
    ["transport", "command", "outcome"],
)

tasmota_command_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "tasmota_command_latency_seconds",
    "Command round-trip latency in seconds",
    ["transport"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

tasmota_reply_timeout_total: Final = Counter(  # type: ignore[assignment]
    "tasmota_reply_timeout_total",
    "Total commands that received no reply before their deadline",
    ["device"],
)

tasmota_pending_correlations: Final = Gauge(  # type: ignore[assignment]
    "tasmota_pending_correlations",
    "Commands currently awaiting a reply",
)

tasmota_inbound_messages_total: Final = Counter(  # type: ignore[assignment]
    "tasmota_inbound_messages_total",
    "Total inbound MQTT messages by classification",
    ["kind"],
)

tasmota_state_changes_total: Final = Counter(  # type: ignore[assignment]
    "tasmota_state_changes_total",
    "Total state changes emitted",
    ["category"],
)

tasmota_session_state: Final = Gauge(  # type: ignore[assignment]
    "tasmota_session_state",
    "Current broker session state",
    ["broker", "state"],
)

tasmota_reconnection_total: Final = Counter(  # type: ignore[assignment]
    "tasmota_reconnection_total",
    "Total broker reconnection attempts",
    ["broker"],
)

tasmota_discovered_devices: Final = Histogram(  # type: ignore[assignment]
    "tasmota_discovered_devices",
    "Devices found per discovery window",
    buckets=(0, 1, 2, 5, 10, 25, 50, 100),
)

tasmota_managed_devices: Final = Gauge(  # type: ignore[assignment]
    "tasmota_managed_devices",
    "Devices registered with a device manager, by connection state",
    ["state"],
)

tasmota_device_connect_total: Final = Counter(  # type: ignore[assignment]
    "tasmota_device_connect_total",
    "Managed device connection attempts",
    ["transport", "outcome"],
)

_SESSION_STATES = ("disconnected", "connecting", "connected", "reconnecting")

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus HTTP metrics server (idempotent)."""
    from tasmota_control.const import TASMOTA_METRICS_PORT

    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port or TASMOTA_METRICS_PORT)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_command(transport: str, command: str, outcome: str) -> None:
    """Record a dispatched command and its outcome."""
    tasmota_command_total.labels(transport=transport, command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_command_latency(transport: str, latency_seconds: float) -> None:
    tasmota_command_latency_seconds.labels(transport=transport).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_reply_timeout(device: str) -> None:
    tasmota_reply_timeout_total.labels(device=device).inc()  # type: ignore[no-untyped-call]


def record_pending_correlations(count: int) -> None:
    tasmota_pending_correlations.set(count)  # type: ignore[no-untyped-call]


def record_inbound_message(kind: str) -> None:
    """Record an inbound message by its classification."""
    tasmota_inbound_messages_total.labels(kind=kind).inc()  # type: ignore[no-untyped-call]


def record_state_change(category: str) -> None:
    tasmota_state_changes_total.labels(category=category).inc()  # type: ignore[no-untyped-call]


def record_session_state(broker: str, state: str) -> None:
    """Record a session state change."""
    # One-hot gauge: 1 for the current state, 0 for the others
    for s in _SESSION_STATES:
        tasmota_session_state.labels(broker=broker, state=s).set(1 if s == state else 0)  # type: ignore[no-untyped-call]


def record_reconnection(broker: str) -> None:
    tasmota_reconnection_total.labels(broker=broker).inc()  # type: ignore[no-untyped-call]


def record_discovery(device_count: int) -> None:
    tasmota_discovered_devices.observe(device_count)  # type: ignore[no-untyped-call]


def record_managed_devices(counts: dict[str, int]) -> None:
    """Set the managed-device gauge from a state -> count mapping."""
    for state, count in counts.items():
        tasmota_managed_devices.labels(state=state).set(count)  # type: ignore[no-untyped-call]


def record_device_connect(transport: str, outcome: str) -> None:
    tasmota_device_connect_total.labels(transport=transport, outcome=outcome).inc()  # type: ignore[no-untyped-call]
