"""Unit tests for command routines."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tasmota_control import commands
from tasmota_control.capabilities import Capabilities
from tasmota_control.const import MAX_ROUTINE_STEPS
from tasmota_control.device import Device
from tasmota_control.exceptions import CapabilityError, CommandTimeoutError, RoutineError, ValidationError
from tasmota_control.routine import RoutineBuilder, RoutineStep, build_routine, run_routine
from tasmota_control.transport.types import Reply
from tasmota_control.values import Dimmer, HsbColor

type DeviceFactory = Callable[..., Device]


class TestBuildRoutine:
    def test_limit_is_inclusive(self) -> None:
        routine = build_routine([commands.power_toggle()] * MAX_ROUTINE_STEPS)
        assert len(routine) == MAX_ROUTINE_STEPS

    def test_too_many_steps(self) -> None:
        with pytest.raises(ValidationError, match="at most 30"):
            _ = build_routine([commands.power_toggle()] * (MAX_ROUTINE_STEPS + 1))

    def test_empty(self) -> None:
        with pytest.raises(ValidationError):
            _ = build_routine([])

    def test_negative_delay(self) -> None:
        with pytest.raises(ValidationError, match="step 2"):
            _ = build_routine([commands.power_on(), RoutineStep(commands.power_off(), delay=-1)])

    def test_rejects_non_commands(self) -> None:
        with pytest.raises(ValidationError):
            _ = build_routine([commands.power_on(), "Power1 0"])  # type: ignore[list-item]

    def test_builder_wait_applies_to_last_step(self) -> None:
        routine = RoutineBuilder().then(commands.power_on()).wait(2).add(commands.set_dimmer(Dimmer(40))).build()
        assert [step.delay for step in routine] == [2, None]

    def test_builder_wait_needs_a_step(self) -> None:
        with pytest.raises(ValidationError):
            _ = RoutineBuilder().wait(1)


class TestRunRoutine:
    @pytest.mark.asyncio
    async def test_runs_in_order_with_delays(self, make_device: DeviceFactory, mock_transport: MagicMock) -> None:
        device = make_device()
        routine = (
            RoutineBuilder()
            .then(commands.power_on())
            .wait(2)
            .then(commands.set_dimmer(Dimmer(40)))
            .then(commands.power_off(), delay=0.5)
            .build()
        )

        with patch("tasmota_control.routine.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            replies = await device.run_routine(routine)

        assert len(replies) == 3
        sent = [call.args[0].to_http_command() for call in mock_transport.send.call_args_list]
        assert sent == ["Power1 1", "Dimmer 40", "Power1 0"]
        assert [call.args[0] for call in mock_sleep.await_args_list] == [2, 0.5]

    @pytest.mark.asyncio
    async def test_stops_at_failing_step(self, make_device: DeviceFactory, mock_transport: MagicMock) -> None:
        device = make_device()
        timeout = CommandTimeoutError("Dimmer", 0.5, "mock-device")
        mock_transport.send.side_effect = [
            Reply("mock-device", "Power1", {"POWER": "ON"}),
            Reply("mock-device", "Dimmer", {"Dimmer": 10}),
            timeout,
            Reply("mock-device", "Dimmer", {"Dimmer": 30}),
            Reply("mock-device", "Power1", {"POWER": "OFF"}),
        ]
        routine = build_routine(
            [
                commands.power_on(),
                commands.set_dimmer(Dimmer(10)),
                commands.set_dimmer(Dimmer(20)),
                commands.set_dimmer(Dimmer(30)),
                commands.power_off(),
            ],
        )

        with pytest.raises(RoutineError) as exc_info:
            _ = await run_routine(device, routine)

        assert exc_info.value.step_index == 3
        assert exc_info.value.cause is timeout
        assert mock_transport.send.await_count == 3

    @pytest.mark.asyncio
    async def test_unsupported_step_fails_without_sending(self, make_device: DeviceFactory, mock_transport: MagicMock) -> None:
        device = make_device(Capabilities.basic())
        routine = build_routine([commands.power_on(), commands.set_hsb_color(HsbColor(10, 100, 100)), commands.power_off()])

        with pytest.raises(RoutineError) as exc_info:
            _ = await run_routine(device, routine)

        assert exc_info.value.step_index == 2
        assert isinstance(exc_info.value.cause, CapabilityError)
        assert mock_transport.send.await_count == 1
