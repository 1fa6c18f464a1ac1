"""Unit tests for validated domain values."""

from __future__ import annotations

import pytest

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


class TestPowerState:
    @pytest.mark.parametrize("raw", ["ON", "on", " On ", "1", 1, "true"])
    def test_parse_on_forms(self, raw: object) -> None:
        assert PowerState.parse(raw) is PowerState.ON

    @pytest.mark.parametrize("raw", ["OFF", "off", "0", 0, "false"])
    def test_parse_off_forms(self, raw: object) -> None:
        assert PowerState.parse(raw) is PowerState.OFF

    def test_parse_rejects_garbage(self) -> None:
        with pytest.raises(ValueError, match="not a power state"):
            _ = PowerState.parse("TOGGLE")

    def test_is_on(self) -> None:
        assert PowerState.ON.is_on
        assert not PowerState.OFF.is_on


class TestRanges:
    @pytest.mark.parametrize(
        ("factory", "value"),
        [
            (PowerIndex, 0),
            (PowerIndex, 9),
            (Dimmer, -1),
            (Dimmer, 101),
            (FadeSpeed, 0),
            (FadeSpeed, 41),
            (WakeupDuration, 0),
            (WakeupDuration, 3001),
            (ColorTemperature, 152),
            (ColorTemperature, 501),
        ],
    )
    def test_out_of_range_rejected(self, factory: type, value: int) -> None:
        with pytest.raises(ValueError, match="must be between"):
            _ = factory(value)

    def test_boundaries_accepted(self) -> None:
        assert PowerIndex(8).value == 8
        assert Dimmer(0).value == 0
        assert Dimmer(100).value == 100
        assert FadeSpeed(40).value == 40
        assert ColorTemperature(153).mireds == 153


class TestHsbColor:
    def test_payload_format(self) -> None:
        assert HsbColor(120, 100, 50).to_payload() == "120,100,50"

    def test_parse(self) -> None:
        assert HsbColor.parse("0, 0, 100") == HsbColor(0, 0, 100)

    def test_parse_wrong_arity(self) -> None:
        with pytest.raises(ValueError, match="3 components"):
            _ = HsbColor.parse("10,20")

    def test_hue_range(self) -> None:
        with pytest.raises(ValueError, match="hue"):
            _ = HsbColor(361, 0, 0)


class TestColorTemperature:
    def test_presets(self) -> None:
        assert ColorTemperature.COOL.mireds == 153  # type: ignore[attr-defined]
        assert ColorTemperature.WARM.mireds == 500  # type: ignore[attr-defined]

    def test_kelvin(self) -> None:
        assert ColorTemperature(250).kelvin == 4000


def test_scheme_values() -> None:
    assert int(Scheme.SINGLE) == 0
    assert Scheme(4) is Scheme.RANDOM
