"""Decode Tasmota JSON payloads into partial state updates.

Handles the flat STATE/SENSOR telemetry shape, command RESULT replies, the
nested ``Status`` sections (``StatusSTS``, ``StatusSNS``, ``StatusMEM``,
``StatusNET``) and the plain-text
``stat/<topic>/POWER[n]`` and ``tele/<topic>/LWT`` messages.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from tasmota_control.exceptions import ProtocolError
from tasmota_control.state.models import Color, EnergyReading, PartialStateUpdate, SystemInfo
from tasmota_control.values import ColorTemperature, HsbColor, PowerState, Scheme

_POWER_KEY = re.compile(r"^POWER(\d*)$")
_STATUS_SECTIONS = ("StatusSTS", "StatusSNS", "StatusMEM", "StatusNET", "Status")


class _TasmotaModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _first_phase(value: object) -> object:
    # Multi-phase meters report lists; keep the first phase
    if isinstance(value, list):
        return value[0] if value else None
    return value


class WifiPayload(_TasmotaModel):
    rssi: int | None = Field(default=None, alias="RSSI")
    signal: int | None = Field(default=None, alias="Signal")
    ssid: str | None = Field(default=None, alias="SSId")


class EnergyPayload(_TasmotaModel):
    total_start_time: str | None = Field(default=None, alias="TotalStartTime")
    total: float | None = Field(default=None, alias="Total")
    yesterday: float | None = Field(default=None, alias="Yesterday")
    today: float | None = Field(default=None, alias="Today")
    power: float | None = Field(default=None, alias="Power")
    apparent_power: float | None = Field(default=None, alias="ApparentPower")
    reactive_power: float | None = Field(default=None, alias="ReactivePower")
    factor: float | None = Field(default=None, alias="Factor")
    voltage: float | None = Field(default=None, alias="Voltage")
    current: float | None = Field(default=None, alias="Current")

    @field_validator(
        "total",
        "yesterday",
        "today",
        "power",
        "apparent_power",
        "reactive_power",
        "factor",
        "voltage",
        "current",
        mode="before",
    )
    @classmethod
    def collapse_phases(cls, value: object) -> object:
        return _first_phase(value)

    def to_reading(self) -> EnergyReading:
        return EnergyReading(**self.model_dump())


class StatusPayload(_TasmotaModel):
    """The top-level ``Status`` section: module and naming."""

    module: int | None = Field(default=None, alias="Module")
    device_name: str | None = Field(default=None, alias="DeviceName")
    friendly_names: list[str | None] = Field(default_factory=list, alias="FriendlyName")
    topic: str | None = Field(default=None, alias="Topic")

    @field_validator("friendly_names", mode="before")
    @classmethod
    def listify_names(cls, value: object) -> object:
        # Older firmware reports a single FriendlyName string
        if isinstance(value, str):
            return [value]
        return value if value is not None else []


class TelemetryPayload(_TasmotaModel):
    """Light, system and sensor fields shared by STATE, SENSOR and RESULT."""

    uptime: str | None = Field(default=None, alias="Uptime")
    uptime_seconds: int | None = Field(default=None, alias="UptimeSec")
    heap: int | None = Field(default=None, alias="Heap")
    hostname: str | None = Field(default=None, alias="Hostname")
    ip_address: str | None = Field(default=None, alias="IPAddress")
    mac: str | None = Field(default=None, alias="Mac")
    dimmer: int | None = Field(default=None, alias="Dimmer")
    hsb_color: str | None = Field(default=None, alias="HSBColor")
    ct: int | None = Field(default=None, alias="CT")
    scheme: int | None = Field(default=None, alias="Scheme")
    fade: bool | None = Field(default=None, alias="Fade")
    speed: int | None = Field(default=None, alias="Speed")
    wifi: WifiPayload | None = Field(default=None, alias="Wifi")
    energy: EnergyPayload | None = Field(default=None, alias="ENERGY")

    @field_validator("fade", mode="before")
    @classmethod
    def parse_fade(cls, value: object) -> object:
        if isinstance(value, str):
            return PowerState.parse(value).is_on
        return value

    @property
    def has_system_fields(self) -> bool:
        system = (self.uptime, self.uptime_seconds, self.heap, self.wifi, self.hostname, self.ip_address, self.mac)
        return any(v is not None for v in system)


def decode_object(payload: str | bytes) -> dict[str, Any] | None:
    """Return the payload as a dict if it is a JSON object, else None."""
    try:
        decoded = json.loads(payload)
    except (ValueError, UnicodeDecodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def flatten_status(body: Mapping[str, Any]) -> dict[str, Any]:
    """Merge nested ``Status*`` sections into one flat telemetry mapping."""
    if not any(section in body for section in _STATUS_SECTIONS):
        return dict(body)
    flat: dict[str, Any] = {k: v for k, v in body.items() if k not in _STATUS_SECTIONS}
    for section in ("StatusMEM", "StatusNET", "StatusSNS", "StatusSTS"):
        value = body.get(section)
        if isinstance(value, Mapping):
            flat.update(value)
    return flat


def _power_from(body: Mapping[str, Any]) -> Mapping[int, PowerState]:
    power: dict[int, PowerState] = {}
    for key, value in body.items():
        match = _POWER_KEY.match(key)
        if match is None:
            continue
        try:
            power[int(match.group(1) or 1)] = PowerState.parse(value)
        except ValueError as e:
            raise ProtocolError(f"bad {key} value: {e}") from e
    return MappingProxyType(power)


def _resolve_color(payload: TelemetryPayload) -> Color | None:
    """Pick HSB or CT. With both present, HSB wins only when saturated."""
    try:
        hsb = HsbColor.parse(payload.hsb_color) if payload.hsb_color is not None else None
        ct = ColorTemperature(payload.ct) if payload.ct is not None else None
    except ValueError as e:
        raise ProtocolError(f"bad color value: {e}") from e
    if hsb is not None and ct is not None:
        return hsb if hsb.saturation > 0 else ct
    return hsb if hsb is not None else ct


def update_from_payload(body: Mapping[str, Any]) -> PartialStateUpdate:
    """Build a PartialStateUpdate from a decoded JSON object.

    Raises:
        ProtocolError: If a present field has a value of the wrong shape

    """
    flat = flatten_status(body)
    try:
        payload = TelemetryPayload.model_validate(flat)
    except pydantic.ValidationError as e:
        raise ProtocolError(f"undecodable telemetry: {e.error_count()} invalid field(s)", json.dumps(body, default=str)) from e

    try:
        scheme = Scheme(payload.scheme) if payload.scheme is not None else None
    except ValueError as e:
        raise ProtocolError(f"unknown scheme {payload.scheme}") from e

    system = None
    if payload.has_system_fields:
        wifi = payload.wifi or WifiPayload()
        system = SystemInfo(
            uptime=payload.uptime,
            uptime_seconds=payload.uptime_seconds,
            rssi=wifi.rssi,
            signal=wifi.signal,
            ssid=wifi.ssid,
            heap=payload.heap,
            hostname=payload.hostname,
            ip_address=payload.ip_address,
            mac=payload.mac,
        )

    return PartialStateUpdate(
        power=_power_from(flat),
        dimmer=payload.dimmer,
        color=_resolve_color(payload),
        scheme=scheme,
        fade_enabled=payload.fade,
        fade_speed=payload.speed,
        energy=payload.energy.to_reading() if payload.energy is not None else None,
        system=system,
    )


def update_from_power_text(suffix: str, text: str) -> PartialStateUpdate:
    """Decode a plain-text ``stat/<topic>/POWER[n]`` message ("ON"/"OFF")."""
    match = _POWER_KEY.match(suffix)
    if match is None:
        raise ProtocolError(f"not a power topic: {suffix}")
    try:
        state = PowerState.parse(text)
    except ValueError as e:
        raise ProtocolError(str(e), text) from e
    return PartialStateUpdate(power=MappingProxyType({int(match.group(1) or 1): state}))


def update_from_last_will(text: str) -> PartialStateUpdate:
    normalized = text.strip().casefold()
    if normalized not in ("online", "offline"):
        raise ProtocolError(f"unexpected LWT payload {text!r}", text)
    return PartialStateUpdate(online=normalized == "online")


def parse_status_section(section: Mapping[str, Any] | None) -> StatusPayload:
    """Decode the top-level ``Status`` section of a status reply.

    Raises:
        ProtocolError: If a present field has a value of the wrong shape

    """
    try:
        return StatusPayload.model_validate(dict(section or {}))
    except pydantic.ValidationError as e:
        raise ProtocolError(f"undecodable Status section: {e.error_count()} invalid field(s)") from e
