"""Device capability sets and the gate that checks commands against them.

Capabilities are built once per device, either from a static profile (no
network I/O) or from a queried ``Status 0`` response, and never change after
the device is constructed.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

import yaml

from tasmota_control.const import MAX_POWER_CHANNELS, NEO_COOLCAM_MODULE_ID
from tasmota_control.exceptions import CapabilityError, ValidationError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.state.parsers import parse_status_section

if TYPE_CHECKING:
    from tasmota_control.commands import Command

logger = get_logger(__name__)

_POWER_KEY = re.compile(r"^POWER(\d*)$")


class Feature(Enum):
    DIMMER = "dimmer"
    RGB = "rgb"
    COLOR_TEMPERATURE = "color_temperature"
    ENERGY = "energy_monitoring"
    FADE = "fade"


@dataclass(frozen=True, slots=True)
class Capabilities:
    """Feature flags and channel count of one device."""

    power_channels: int = 1
    dimmer: bool = False
    rgb: bool = False
    color_temperature: bool = False
    energy: bool = False
    fade: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.power_channels, int) or not 1 <= self.power_channels <= MAX_POWER_CHANNELS:
            msg = f"power_channels must be 1..{MAX_POWER_CHANNELS}, got {self.power_channels!r}"
            raise ValidationError(msg)

    @property
    def channel_range(self) -> range:
        return range(1, self.power_channels + 1)

    @property
    def features(self) -> frozenset[Feature]:
        flags = {
            Feature.DIMMER: self.dimmer,
            Feature.RGB: self.rgb,
            Feature.COLOR_TEMPERATURE: self.color_temperature,
            Feature.ENERGY: self.energy,
            Feature.FADE: self.fade,
        }
        return frozenset(f for f, enabled in flags.items() if enabled)

    def supports(self, feature: Feature) -> bool:
        return feature in self.features

    # Static profiles

    @classmethod
    def basic(cls) -> Self:
        """Single relay, no light or energy features."""
        return cls()

    @classmethod
    def neo_coolcam(cls) -> Self:
        """Neo Coolcam plug: one relay with power monitoring."""
        return cls(energy=True)

    @classmethod
    def rgb_light(cls) -> Self:
        return cls(dimmer=True, rgb=True, fade=True)

    @classmethod
    def rgbcct_light(cls) -> Self:
        return cls(dimmer=True, rgb=True, color_temperature=True, fade=True)

    @classmethod
    def cct_light(cls) -> Self:
        return cls(dimmer=True, color_temperature=True, fade=True)

    @classmethod
    def from_status(cls, body: Mapping[str, Any]) -> Capabilities:
        """Map a ``Status 0`` response onto capability flags."""
        return infer_capabilities(
            status=body.get("Status"),
            state=body.get("StatusSTS"),
            sensors=body.get("StatusSNS"),
        )


PROFILES: dict[str, Capabilities] = {
    "basic": Capabilities.basic(),
    "neo_coolcam": Capabilities.neo_coolcam(),
    "rgb_light": Capabilities.rgb_light(),
    "rgbcct_light": Capabilities.rgbcct_light(),
    "cct_light": Capabilities.cct_light(),
}


def build_capabilities(power_channels: int = 1, features: Iterable[Feature | str] = ()) -> Capabilities:
    """Validate and build a capability set.

    Args:
        power_channels: Number of relays (1-8)
        features: Features as Feature members or their string values

    Returns:
        Immutable Capabilities

    Raises:
        ValidationError: On a bad channel count or an unknown feature name

    """
    resolved: set[Feature] = set()
    for item in features:
        if isinstance(item, Feature):
            resolved.add(item)
            continue
        try:
            resolved.add(Feature(str(item)))
        except ValueError:
            msg = f"unknown feature '{item}'"
            raise ValidationError(msg) from None
    if isinstance(power_channels, bool) or not isinstance(power_channels, int):
        msg = f"power_channels must be an integer, got {power_channels!r}"
        raise ValidationError(msg)
    return Capabilities(
        power_channels=power_channels,
        dimmer=Feature.DIMMER in resolved,
        rgb=Feature.RGB in resolved,
        color_temperature=Feature.COLOR_TEMPERATURE in resolved,
        energy=Feature.ENERGY in resolved,
        fade=Feature.FADE in resolved,
    )


class CapabilitiesBuilder:
    """Chainable front end for build_capabilities.

    Example:
        caps = CapabilitiesBuilder().power_channels(2).with_feature(Feature.ENERGY).build()
    """

    def __init__(self) -> None:
        self._args: dict[str, Any] = {"power_channels": 1, "features": []}

    def power_channels(self, count: int) -> Self:
        self._args["power_channels"] = count
        return self

    def with_feature(self, feature: Feature | str) -> Self:
        self._args["features"].append(feature)
        return self

    def with_dimmer(self) -> Self:
        return self.with_feature(Feature.DIMMER)

    def with_rgb(self) -> Self:
        return self.with_feature(Feature.RGB)

    def with_color_temperature(self) -> Self:
        return self.with_feature(Feature.COLOR_TEMPERATURE)

    def with_energy_monitoring(self) -> Self:
        return self.with_feature(Feature.ENERGY)

    def with_fade(self) -> Self:
        return self.with_feature(Feature.FADE)

    def build(self) -> Capabilities:
        return build_capabilities(**self._args)


def _channels_from_state(state: Mapping[str, Any]) -> int:
    highest = 0
    for key in state:
        match = _POWER_KEY.match(key)
        if match:
            highest = max(highest, int(match.group(1) or 1))
    return highest


def infer_capabilities(
    status: Mapping[str, Any] | None = None,
    state: Mapping[str, Any] | None = None,
    sensors: Mapping[str, Any] | None = None,
) -> Capabilities:
    """Infer capabilities from status/state/sensor sections of a device.

    Channel count comes from the highest POWERn key in the state section,
    then from the number of friendly names, capped at the relay limit.
    Light features follow the presence of their state keys; energy monitoring
    follows an ENERGY sensor block or the Neo Coolcam module id.
    """
    info = parse_status_section(status)
    state = state or {}
    sensors = sensors or {}

    channels = _channels_from_state(state) or len(info.friendly_names) or 1
    channels = min(channels, MAX_POWER_CHANNELS)

    caps = Capabilities(
        power_channels=channels,
        dimmer="Dimmer" in state,
        rgb="HSBColor" in state,
        color_temperature="CT" in state,
        energy="ENERGY" in sensors or info.module == NEO_COOLCAM_MODULE_ID,
        fade="Fade" in state,
    )
    logger.debug("inferred capabilities: %s", caps)
    return caps


def load_profiles(path: str | Path) -> dict[str, Capabilities]:
    """Load named capability profiles from a YAML file.

    Each entry is either the name of a built-in profile or a mapping with
    ``power_channels`` and ``features``::

        porch_light: rgbcct_light
        pool_pump:
          power_channels: 2
          features: [energy_monitoring]

    Raises:
        ValidationError: On an unknown built-in name or invalid entry

    """
    with Path(path).open(encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, Mapping):
        msg = f"{path}: expected a mapping of profile names"
        raise ValidationError(msg)

    profiles: dict[str, Capabilities] = {}
    for name, entry in raw.items():
        if isinstance(entry, str):
            if entry not in PROFILES:
                msg = f"{path}: profile '{name}' refers to unknown preset '{entry}'"
                raise ValidationError(msg)
            profiles[str(name)] = PROFILES[entry]
        elif isinstance(entry, Mapping):
            profiles[str(name)] = build_capabilities(
                power_channels=entry.get("power_channels", 1),
                features=entry.get("features") or (),
            )
        else:
            msg = f"{path}: profile '{name}' must be a preset name or a mapping"
            raise ValidationError(msg)
    logger.info("loaded %d capability profiles from %s", len(profiles), path)
    return profiles


class CapabilityGate:
    """Pre-dispatch check of commands against a device's capabilities."""

    def __init__(self, capabilities: Capabilities) -> None:
        self.capabilities: Capabilities = capabilities

    def authorize(self, command: Command) -> None:
        """Raise CapabilityError if the device cannot perform ``command``.

        Pure and synchronous: no transport is touched.
        """
        if command.feature is not None and not self.capabilities.supports(command.feature):
            raise CapabilityError(command.name, feature=command.feature.value)
        if command.channel is not None and command.channel not in self.capabilities.channel_range:
            raise CapabilityError(command.name, channel=command.channel, max_channel=self.capabilities.power_channels)
