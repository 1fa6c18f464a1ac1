"""Typed Tasmota commands.

A Command carries everything the rest of the library needs to dispatch it and
recognise its reply: the Tasmota command word and payload token, the feature
and channel the capability gate checks, and the reply topics/keys the
correlator matches against.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tasmota_control.capabilities import Feature
from tasmota_control.values import (
    ColorTemperature,
    Dimmer,
    FadeSpeed,
    HsbColor,
    PowerIndex,
    PowerState,
    Scheme,
    WakeupDuration,
)

RESULT_TOPIC = "RESULT"
_POWER_KEY = re.compile(r"^POWER\d*$")

# Topics published in response to "Status 0". STATUS10 only exists on devices with sensors.
STATUS_ALL_TOPICS: frozenset[str] = frozenset(
    {"STATUS", "STATUS1", "STATUS2", "STATUS3", "STATUS4", "STATUS5", "STATUS6", "STATUS7", "STATUS10", "STATUS11"},
)
STATUS_ALL_REQUIRED: frozenset[str] = STATUS_ALL_TOPICS - {"STATUS10"}


class CommandKind(Enum):
    POWER = "power"
    DIMMER = "dimmer"
    HSB_COLOR = "hsb_color"
    COLOR_TEMPERATURE = "color_temperature"
    SCHEME = "scheme"
    WAKEUP_DURATION = "wakeup_duration"
    FADE = "fade"
    FADE_SPEED = "fade_speed"
    FADE_AT_STARTUP = "fade_at_startup"
    STATUS = "status"
    ENERGY = "energy"
    ENERGY_RESET = "energy_reset"
    STATE = "state"


class StatusType(Enum):
    """Sections of the ``Status`` command (None is the abbreviated form)."""

    ABBREVIATED = None
    ALL = 0
    DEVICE_PARAMETERS = 1
    FIRMWARE = 2
    LOGGING = 3
    MEMORY = 4
    NETWORK = 5
    MQTT = 6
    TIME = 7
    POWER_THRESHOLDS = 9
    SENSORS = 10
    STATE = 11


@dataclass(frozen=True, slots=True)
class Command:
    """One command ready for dispatch over either transport.

    Attributes:
        kind: Command family, part of the correlation key
        name: Tasmota command word ("Power2", "Dimmer", "Status")
        payload: Argument token; empty for queries
        feature: Feature the device must support, if any
        channel: Power channel addressed, if any
        reply_keys: Top-level JSON keys that identify this command's reply
            (empty means any object on a reply topic matches)
        reply_topics: ``stat/<topic>/<suffix>`` suffixes the reply may arrive on
        collect: Reply is spread over several topics and must be merged
        required_topics: Topics that complete a collected reply
        echo: Value the device reports under ``name`` once a set command
            took effect; tells apart light replies that share the same keys

    """

    kind: CommandKind
    name: str
    payload: str = ""
    feature: Feature | None = None
    channel: int | None = None
    reply_keys: frozenset[str] = frozenset()
    reply_topics: frozenset[str] = frozenset({RESULT_TOPIC})
    collect: bool = False
    required_topics: frozenset[str] = field(default_factory=frozenset)
    echo: str | None = None

    def to_http_command(self) -> str:
        """Render as the ``cmnd`` query value of the HTTP ``/cm`` endpoint."""
        return f"{self.name} {self.payload}".strip()

    def mqtt_topic(self, device_topic: str) -> str:
        return f"cmnd/{device_topic}/{self.name}"

    def matches_reply(self, suffix: str, body_keys: frozenset[str] | set[str]) -> bool:
        if suffix not in self.reply_topics:
            return False
        if self.kind is CommandKind.POWER:
            # Light commands echo POWER next to their own keys; a power reply carries nothing else
            if not body_keys or not all(_POWER_KEY.match(k) for k in body_keys):
                return False
        return not self.reply_keys or bool(self.reply_keys & body_keys)

    def echoed_by(self, body: Mapping[str, Any]) -> bool:
        if self.echo is None or self.name not in body:
            return False
        return _normalize_echo(body[self.name]) == self.echo

    def __str__(self) -> str:
        return self.to_http_command()


def _normalize_echo(value: object) -> str:
    return str(value).replace(" ", "").upper()


def _power_keys(index: int) -> frozenset[str]:
    # Single-relay devices answer Power1 with "POWER"
    if index == 1:
        return frozenset({"POWER", "POWER1"})
    return frozenset({f"POWER{index}"})


def _power(index: PowerIndex | int, payload: str) -> Command:
    channel = index.value if isinstance(index, PowerIndex) else PowerIndex(index).value
    return Command(
        kind=CommandKind.POWER,
        name=f"Power{channel}",
        payload=payload,
        channel=channel,
        reply_keys=_power_keys(channel),
    )


def power_on(index: PowerIndex | int = 1) -> Command:
    return _power(index, "1")


def power_off(index: PowerIndex | int = 1) -> Command:
    return _power(index, "0")


def power_toggle(index: PowerIndex | int = 1) -> Command:
    return _power(index, "2")


def set_power(state: PowerState, index: PowerIndex | int = 1) -> Command:
    return _power(index, "1" if state.is_on else "0")


def get_power(index: PowerIndex | int = 1) -> Command:
    return _power(index, "")


def _light(kind: CommandKind, name: str, payload: str, feature: Feature, echo: str | None = None) -> Command:
    return Command(kind=kind, name=name, payload=payload, feature=feature, reply_keys=frozenset({name}), echo=echo)


def set_dimmer(value: Dimmer) -> Command:
    return _light(CommandKind.DIMMER, "Dimmer", str(value.value), Feature.DIMMER, echo=str(value.value))


def step_dimmer(up: bool = True) -> Command:
    """Step brightness by the device's configured increment."""
    return _light(CommandKind.DIMMER, "Dimmer", "+" if up else "-", Feature.DIMMER)


def get_dimmer() -> Command:
    return _light(CommandKind.DIMMER, "Dimmer", "", Feature.DIMMER)


def set_hsb_color(color: HsbColor) -> Command:
    payload = color.to_payload()
    return _light(CommandKind.HSB_COLOR, "HSBColor", payload, Feature.RGB, echo=payload)


def get_hsb_color() -> Command:
    return _light(CommandKind.HSB_COLOR, "HSBColor", "", Feature.RGB)


def set_color_temperature(value: ColorTemperature) -> Command:
    mireds = str(value.mireds)
    return _light(CommandKind.COLOR_TEMPERATURE, "CT", mireds, Feature.COLOR_TEMPERATURE, echo=mireds)


def get_color_temperature() -> Command:
    return _light(CommandKind.COLOR_TEMPERATURE, "CT", "", Feature.COLOR_TEMPERATURE)


def set_scheme(scheme: Scheme) -> Command:
    number = str(int(scheme))
    return _light(CommandKind.SCHEME, "Scheme", number, Feature.RGB, echo=number)


def get_scheme() -> Command:
    return _light(CommandKind.SCHEME, "Scheme", "", Feature.RGB)


def set_wakeup_duration(duration: WakeupDuration) -> Command:
    seconds = str(duration.seconds)
    return _light(CommandKind.WAKEUP_DURATION, "WakeupDuration", seconds, Feature.DIMMER, echo=seconds)


def enable_fade() -> Command:
    return _light(CommandKind.FADE, "Fade", "1", Feature.FADE, echo="ON")


def disable_fade() -> Command:
    return _light(CommandKind.FADE, "Fade", "0", Feature.FADE, echo="OFF")


def get_fade() -> Command:
    return _light(CommandKind.FADE, "Fade", "", Feature.FADE)


def set_fade_speed(speed: FadeSpeed) -> Command:
    value = str(speed.value)
    return _light(CommandKind.FADE_SPEED, "Speed", value, Feature.FADE, echo=value)


def get_fade_speed() -> Command:
    return _light(CommandKind.FADE_SPEED, "Speed", "", Feature.FADE)


def set_fade_at_startup(enabled: bool) -> Command:
    """Fade from off to the saved brightness at boot (``SetOption91``)."""
    flag = "1" if enabled else "0"
    return _light(CommandKind.FADE_AT_STARTUP, "SetOption91", flag, Feature.FADE, echo="ON" if enabled else "OFF")


def status(status_type: StatusType = StatusType.ABBREVIATED) -> Command:
    """Query one status section, all of them, or the abbreviated summary."""
    if status_type is StatusType.ALL:
        return Command(
            kind=CommandKind.STATUS,
            name="Status",
            payload="0",
            reply_topics=STATUS_ALL_TOPICS,
            collect=True,
            required_topics=STATUS_ALL_REQUIRED,
        )
    if status_type is StatusType.ABBREVIATED:
        return Command(kind=CommandKind.STATUS, name="Status", reply_topics=frozenset({"STATUS"}))
    return Command(
        kind=CommandKind.STATUS,
        name="Status",
        payload=str(status_type.value),
        reply_topics=frozenset({f"STATUS{status_type.value}"}),
    )


def status_all() -> Command:
    return status(StatusType.ALL)


def get_energy() -> Command:
    """Energy readings come back in the sensor section (``StatusSNS.ENERGY``)."""
    return Command(
        kind=CommandKind.ENERGY,
        name="Status",
        payload=str(StatusType.SENSORS.value),
        feature=Feature.ENERGY,
        reply_topics=frozenset({"STATUS10"}),
        reply_keys=frozenset({"StatusSNS"}),
    )


def _energy_reset(name: str) -> Command:
    return Command(
        kind=CommandKind.ENERGY_RESET,
        name=name,
        payload="0",
        feature=Feature.ENERGY,
        reply_keys=frozenset({"EnergyReset"}),
    )


def reset_energy_today() -> Command:
    return _energy_reset("EnergyReset1")


def reset_energy_yesterday() -> Command:
    return _energy_reset("EnergyReset2")


def reset_energy_total() -> Command:
    return _energy_reset("EnergyReset3")


def get_state() -> Command:
    """Full light/relay state, answered with a STATE-shaped RESULT."""
    return Command(kind=CommandKind.STATE, name="State", reply_keys=frozenset({"Uptime", "UptimeSec"}))
