"""Device state snapshots and partial updates."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType

from tasmota_control.values import ColorTemperature, HsbColor, PowerState, Scheme

type Color = HsbColor | ColorTemperature


def _empty_power() -> Mapping[int, PowerState]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class EnergyReading:
    """One ENERGY block from a power-monitoring device."""

    power: float | None = None
    voltage: float | None = None
    current: float | None = None
    apparent_power: float | None = None
    reactive_power: float | None = None
    factor: float | None = None
    today: float | None = None
    yesterday: float | None = None
    total: float | None = None
    total_start_time: str | None = None


@dataclass(frozen=True, slots=True)
class SystemInfo:
    uptime: str | None = None
    uptime_seconds: int | None = None
    rssi: int | None = None
    signal: int | None = None
    ssid: str | None = None
    heap: int | None = None
    hostname: str | None = None
    ip_address: str | None = None
    mac: str | None = None

    def merge(self, other: SystemInfo | None) -> SystemInfo:
        """Overlay the fields ``other`` reports; a section-only reply keeps the rest."""
        if other is None:
            return self
        return replace(self, **{f.name: v for f in fields(other) if (v := getattr(other, f.name)) is not None})


@dataclass(frozen=True, slots=True)
class DeviceState:
    """Immutable snapshot of everything known about one device.

    A field is None (or, for ``power``, missing a channel) until a value has
    been observed from a reply or telemetry.
    """

    power: Mapping[int, PowerState] = field(default_factory=_empty_power)
    dimmer: int | None = None
    color: Color | None = None
    scheme: Scheme | None = None
    fade_enabled: bool | None = None
    fade_speed: int | None = None
    energy: EnergyReading | None = None
    system: SystemInfo | None = None
    online: bool | None = None

    def power_state(self, index: int = 1) -> PowerState | None:
        return self.power.get(index)

    @property
    def hsb_color(self) -> HsbColor | None:
        return self.color if isinstance(self.color, HsbColor) else None

    @property
    def color_temperature(self) -> ColorTemperature | None:
        return self.color if isinstance(self.color, ColorTemperature) else None


@dataclass(frozen=True, slots=True)
class PartialStateUpdate:
    """Fields observed in one inbound message; None means "not present"."""

    power: Mapping[int, PowerState] = field(default_factory=_empty_power)
    dimmer: int | None = None
    color: Color | None = None
    scheme: Scheme | None = None
    fade_enabled: bool | None = None
    fade_speed: int | None = None
    energy: EnergyReading | None = None
    system: SystemInfo | None = None
    online: bool | None = None

    @property
    def is_empty(self) -> bool:
        if self.power:
            return False
        return all(getattr(self, f.name) is None for f in fields(self) if f.name != "power")

    def merge(self, other: PartialStateUpdate) -> PartialStateUpdate:
        """Combine two updates; fields present in ``other`` win."""
        values: dict[str, object] = {}
        for f in fields(self):
            if f.name == "power":
                values["power"] = MappingProxyType({**self.power, **other.power})
                continue
            if f.name == "system" and self.system is not None:
                values["system"] = self.system.merge(other.system)
                continue
            theirs = getattr(other, f.name)
            values[f.name] = theirs if theirs is not None else getattr(self, f.name)
        return PartialStateUpdate(**values)  # type: ignore[arg-type]
