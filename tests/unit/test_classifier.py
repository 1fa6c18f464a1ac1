"""Unit tests for inbound message classification."""

from __future__ import annotations

import pytest

from tasmota_control.transport.classifier import MessageKind, classify_message, to_state_update
from tasmota_control.values import PowerState


class TestClassifyMessage:
    @pytest.mark.parametrize(
        ("topic", "payload", "kind"),
        [
            ("stat/plug/RESULT", '{"POWER": "ON"}', MessageKind.REPLY),
            ("stat/plug/STATUS11", '{"StatusSTS": {}}', MessageKind.REPLY),
            ("stat/plug/POWER", "OFF", MessageKind.TELEMETRY),
            ("stat/plug/POWER2", "ON", MessageKind.TELEMETRY),
            ("tele/plug/STATE", '{"POWER": "ON"}', MessageKind.TELEMETRY),
            ("tele/plug/SENSOR", '{"ENERGY": {}}', MessageKind.TELEMETRY),
            ("tele/plug/LWT", "Online", MessageKind.LAST_WILL),
            ("stat/plug/RESULT", "not json", MessageKind.IGNORED),
            ("tele/plug/INFO1", "[1, 2]", MessageKind.IGNORED),
            ("plug", '{"POWER": "ON"}', MessageKind.IGNORED),
            ("stat//RESULT", '{"POWER": "ON"}', MessageKind.IGNORED),
        ],
    )
    def test_precedence(self, topic: str, payload: str, kind: MessageKind) -> None:
        assert classify_message(topic, payload).kind is kind

    def test_plain_power_off_is_not_json_decoded(self) -> None:
        """Regression: a power-off echo used to fail with 'expected value at line 1 column 1'."""
        message = classify_message("stat/plug/POWER", b"OFF")
        assert message.kind is MessageKind.TELEMETRY
        assert message.body is None

        update = to_state_update(message)
        assert update is not None
        assert dict(update.power) == {1: PowerState.OFF}

    def test_parts(self) -> None:
        message = classify_message("stat/kitchen/plug/RESULT", "{}")
        assert message.prefix == "stat"
        assert message.device_topic == "kitchen/plug"
        assert message.suffix == "RESULT"

    def test_last_will_update(self) -> None:
        update = to_state_update(classify_message("tele/plug/LWT", "Offline"))
        assert update is not None
        assert update.online is False

    def test_ignored_has_no_update(self) -> None:
        assert to_state_update(classify_message("plug", "x")) is None
