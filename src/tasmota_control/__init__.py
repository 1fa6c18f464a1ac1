"""Async control of Tasmota devices over HTTP and MQTT."""

from __future__ import annotations

__version__ = "0.3.0"

from tasmota_control.capabilities import Capabilities, CapabilitiesBuilder, CapabilityGate, Feature
from tasmota_control.config import BrokerConfig, DeviceConfig, HttpConfig
from tasmota_control.device import Device
from tasmota_control.discovery import discover
from tasmota_control.events import (
    ConnectionStateChanged,
    DeviceAdded,
    DeviceEvent,
    DeviceRemoved,
    DeviceStateChanged,
    EventBus,
    EventSubscription,
)
from tasmota_control.exceptions import (
    CapabilityError,
    CommandTimeoutError,
    DeviceNotFoundError,
    ProtocolError,
    RoutineError,
    TasmotaConnectionError,
    TasmotaError,
    ValidationError,
)
from tasmota_control.logging_abstraction import configure_logging
from tasmota_control.manager import DeviceManager, ManagedConnectionState, StateWatch
from tasmota_control.routine import Routine, RoutineBuilder, RoutineStep, build_routine, run_routine
from tasmota_control.state.models import DeviceState, PartialStateUpdate
from tasmota_control.transport.pool import BrokerPool
from tasmota_control.transport.session import BrokerSession, SessionState

__all__ = [
    "BrokerConfig",
    "BrokerPool",
    "BrokerSession",
    "Capabilities",
    "CapabilitiesBuilder",
    "CapabilityError",
    "CapabilityGate",
    "CommandTimeoutError",
    "ConnectionStateChanged",
    "Device",
    "DeviceAdded",
    "DeviceConfig",
    "DeviceEvent",
    "DeviceManager",
    "DeviceNotFoundError",
    "DeviceRemoved",
    "DeviceState",
    "DeviceStateChanged",
    "EventBus",
    "EventSubscription",
    "Feature",
    "HttpConfig",
    "ManagedConnectionState",
    "PartialStateUpdate",
    "ProtocolError",
    "Routine",
    "RoutineBuilder",
    "RoutineError",
    "RoutineStep",
    "SessionState",
    "StateWatch",
    "TasmotaConnectionError",
    "TasmotaError",
    "ValidationError",
    "__version__",
    "build_routine",
    "configure_logging",
    "discover",
    "run_routine",
]
