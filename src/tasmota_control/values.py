"""Validated domain values accepted by device commands.

Values are checked once, at construction; everything downstream treats them
as already valid.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar

from tasmota_control.const import MAX_POWER_CHANNELS


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        msg = f"{name} must be between {low} and {high}, got {value}"
        raise ValueError(msg)


class PowerState(Enum):
    ON = "ON"
    OFF = "OFF"

    @classmethod
    def parse(cls, raw: object) -> PowerState:
        """Parse the power token forms Tasmota emits ("ON", "off", 1, "true")."""
        text = str(raw).strip().casefold()
        if text in ("on", "1", "true"):
            return cls.ON
        if text in ("off", "0", "false"):
            return cls.OFF
        msg = f"not a power state: {raw!r}"
        raise ValueError(msg)

    @property
    def is_on(self) -> bool:
        return self is PowerState.ON


@dataclass(frozen=True, slots=True)
class PowerIndex:
    """Relay channel, 1-based."""

    value: int = 1

    def __post_init__(self) -> None:
        _check_range("power index", self.value, 1, MAX_POWER_CHANNELS)


@dataclass(frozen=True, slots=True)
class Dimmer:
    value: int

    def __post_init__(self) -> None:
        _check_range("dimmer", self.value, 0, 100)


@dataclass(frozen=True, slots=True)
class HsbColor:
    """Hue (0-360), saturation (0-100) and brightness (0-100)."""

    hue: int
    saturation: int
    brightness: int

    def __post_init__(self) -> None:
        _check_range("hue", self.hue, 0, 360)
        _check_range("saturation", self.saturation, 0, 100)
        _check_range("brightness", self.brightness, 0, 100)

    def to_payload(self) -> str:
        return f"{self.hue},{self.saturation},{self.brightness}"

    @classmethod
    def parse(cls, raw: str) -> HsbColor:
        """Parse the ``"h,s,b"`` form used by HSBColor replies."""
        parts = [p.strip() for p in str(raw).split(",")]
        if len(parts) != 3:
            msg = f"HSBColor needs 3 components, got {raw!r}"
            raise ValueError(msg)
        hue, saturation, brightness = (int(p) for p in parts)
        return cls(hue, saturation, brightness)


@dataclass(frozen=True, slots=True)
class ColorTemperature:
    """White color temperature in mireds (153 cold to 500 warm)."""

    mireds: int

    MIN: ClassVar[int] = 153
    MAX: ClassVar[int] = 500

    def __post_init__(self) -> None:
        _check_range("color temperature", self.mireds, self.MIN, self.MAX)

    @property
    def kelvin(self) -> int:
        return round(1_000_000 / self.mireds)


ColorTemperature.COOL = ColorTemperature(153)  # type: ignore[attr-defined]
ColorTemperature.NEUTRAL = ColorTemperature(326)  # type: ignore[attr-defined]
ColorTemperature.WARM = ColorTemperature(500)  # type: ignore[attr-defined]


@dataclass(frozen=True, slots=True)
class FadeSpeed:
    """Transition speed, 1 (fast) to 40 (slow)."""

    value: int

    def __post_init__(self) -> None:
        _check_range("fade speed", self.value, 1, 40)


@dataclass(frozen=True, slots=True)
class WakeupDuration:
    seconds: int

    def __post_init__(self) -> None:
        _check_range("wakeup duration", self.seconds, 1, 3000)


class Scheme(IntEnum):
    SINGLE = 0
    WAKEUP = 1
    CYCLE_UP = 2
    CYCLE_DOWN = 3
    RANDOM = 4
