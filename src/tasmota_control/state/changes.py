"""Typed state-change events emitted by the state synchronizer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from tasmota_control.state.models import Color, EnergyReading, SystemInfo
from tasmota_control.values import ColorTemperature, HsbColor, PowerState, Scheme


@dataclass(frozen=True, slots=True)
class StateChange:
    """Base of all change events; ``category`` names the per-field subscription."""

    category: ClassVar[str] = "state"


@dataclass(frozen=True, slots=True)
class PowerChanged(StateChange):
    category: ClassVar[str] = "power"

    index: int
    state: PowerState
    previous: PowerState | None = None


@dataclass(frozen=True, slots=True)
class DimmerChanged(StateChange):
    category: ClassVar[str] = "dimmer"

    value: int
    previous: int | None = None


@dataclass(frozen=True, slots=True)
class ColorChanged(StateChange):
    """The light switched to (or changed) an HSB color."""

    category: ClassVar[str] = "color"

    color: HsbColor
    previous: Color | None = None


@dataclass(frozen=True, slots=True)
class ColorTemperatureChanged(StateChange):
    """The light switched to (or changed) white color temperature."""

    category: ClassVar[str] = "color_temperature"

    value: ColorTemperature
    previous: Color | None = None


@dataclass(frozen=True, slots=True)
class SchemeChanged(StateChange):
    category: ClassVar[str] = "scheme"

    scheme: Scheme
    previous: Scheme | None = None


@dataclass(frozen=True, slots=True)
class FadeChanged(StateChange):
    category: ClassVar[str] = "fade"

    enabled: bool | None
    speed: int | None


@dataclass(frozen=True, slots=True)
class EnergyChanged(StateChange):
    category: ClassVar[str] = "energy"

    reading: EnergyReading
    previous: EnergyReading | None = None


@dataclass(frozen=True, slots=True)
class SystemChanged(StateChange):
    category: ClassVar[str] = "system"

    info: SystemInfo


@dataclass(frozen=True, slots=True)
class ConnectionChanged(StateChange):
    """Device went online or offline (MQTT last will)."""

    category: ClassVar[str] = "connection"

    online: bool
