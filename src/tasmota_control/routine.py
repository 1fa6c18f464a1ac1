"""Fail-fast multi-step command routines."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Self

from tasmota_control.commands import Command
from tasmota_control.const import MAX_ROUTINE_STEPS
from tasmota_control.correlation import correlation_context
from tasmota_control.exceptions import RoutineError, TasmotaError, ValidationError
from tasmota_control.logging_abstraction import get_logger

if TYPE_CHECKING:
    from tasmota_control.device import Device
    from tasmota_control.transport.types import Reply

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RoutineStep:
    """A command and the pause (seconds) after it completes."""

    command: Command
    delay: float | None = None


@dataclass(frozen=True, slots=True)
class Routine:
    steps: tuple[RoutineStep, ...]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[RoutineStep]:
        return iter(self.steps)


def build_routine(steps: Iterable[RoutineStep | Command]) -> Routine:
    """Validate steps into an immutable Routine.

    Bare Commands become steps without a delay.

    Raises:
        ValidationError: Empty, longer than MAX_ROUTINE_STEPS, a negative delay,
            or an entry that is neither a step nor a command

    """
    normalized: list[RoutineStep] = []
    for position, item in enumerate(steps, start=1):
        if isinstance(item, Command):
            item = RoutineStep(item)
        elif not isinstance(item, RoutineStep):
            msg = f"step {position} is not a command: {item!r}"
            raise ValidationError(msg)
        if item.delay is not None and item.delay < 0:
            msg = f"step {position} has a negative delay ({item.delay}s)"
            raise ValidationError(msg)
        normalized.append(item)

    if not normalized:
        msg = "a routine needs at least one step"
        raise ValidationError(msg)
    if len(normalized) > MAX_ROUTINE_STEPS:
        msg = f"a routine has at most {MAX_ROUTINE_STEPS} steps, got {len(normalized)}"
        raise ValidationError(msg)
    return Routine(tuple(normalized))


class RoutineBuilder:
    """Collects steps for build_routine.

    Example:
        routine = (
            RoutineBuilder()
            .then(commands.power_on())
            .wait(2)
            .then(commands.set_dimmer(Dimmer(40)))
            .build()
        )
    """

    def __init__(self) -> None:
        self._steps: list[RoutineStep] = []

    def then(self, command: Command, delay: float | None = None) -> Self:
        self._steps.append(RoutineStep(command, delay))
        return self

    add = then

    def wait(self, seconds: float) -> Self:
        """Pause after the most recently added step."""
        if not self._steps:
            msg = "wait() needs a preceding step"
            raise ValidationError(msg)
        self._steps[-1] = replace(self._steps[-1], delay=seconds)
        return self

    def build(self) -> Routine:
        return build_routine(self._steps)


async def run_routine(device: Device, routine: Routine) -> list[Reply]:
    """Run each step in order; stop at the first failure.

    Nothing already sent is undone when a step fails.

    Returns:
        One reply per step

    Raises:
        RoutineError: With the 1-based index of the failed step and its cause

    """
    lp = f"routine[{device.device_id}]:run:"
    replies: list[Reply] = []
    with correlation_context() as corr_id:
        logger.info("%s starting %d step(s)", lp, len(routine), extra={"correlation_id": corr_id})
        for index, step in enumerate(routine.steps, start=1):
            try:
                replies.append(await device.send_command(step.command))
            except TasmotaError as e:
                logger.warning("%s step %d (%s) failed: %s", lp, index, step.command, e)
                raise RoutineError(index, e) from e
            if step.delay:
                await asyncio.sleep(step.delay)
        logger.info("%s completed", lp)
    return replies
