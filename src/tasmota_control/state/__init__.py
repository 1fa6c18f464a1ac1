"""Device state model, change events and synchronization."""

from tasmota_control.state.changes import (
    ColorChanged,
    ColorTemperatureChanged,
    ConnectionChanged,
    DimmerChanged,
    EnergyChanged,
    FadeChanged,
    PowerChanged,
    SchemeChanged,
    StateChange,
    SystemChanged,
)
from tasmota_control.state.models import DeviceState, EnergyReading, PartialStateUpdate, SystemInfo
from tasmota_control.state.synchronizer import StateSynchronizer

__all__ = [
    "ColorChanged",
    "ColorTemperatureChanged",
    "ConnectionChanged",
    "DeviceState",
    "DimmerChanged",
    "EnergyChanged",
    "EnergyReading",
    "FadeChanged",
    "PartialStateUpdate",
    "PowerChanged",
    "SchemeChanged",
    "StateChange",
    "StateSynchronizer",
    "SystemChanged",
    "SystemInfo",
]
