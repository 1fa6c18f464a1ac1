"""Shared transport data structures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from tasmota_control.state.models import PartialStateUpdate

if TYPE_CHECKING:
    from tasmota_control.commands import Command, CommandKind

type StateSink = Callable[[PartialStateUpdate], object]
type CorrelationKey = tuple[str, CommandKind, int]


@dataclass(frozen=True, slots=True)
class Reply:
    """Decoded reply to one command.

    Attributes:
        device: Device topic (MQTT) or host (HTTP)
        command: Command word the reply answers
        body: Decoded JSON object; merged across topics for collected replies
        topics: Reply topic suffixes that contributed (empty for HTTP)
        partial: True when a collected reply hit its deadline incomplete

    """

    device: str
    command: str
    body: Mapping[str, Any]
    topics: tuple[str, ...] = ()
    partial: bool = False


@dataclass(slots=True)
class PendingCorrelation:
    """One MQTT command awaiting its reply.

    Created before the publish and removed once the future is resolved or
    the deadline passes, whichever comes first.
    """

    device: str
    command: Command
    sequence: int
    created_at: float
    deadline: float
    future: asyncio.Future[Reply]
    correlation_id: str | None = None
    collected: dict[str, Mapping[str, Any]] = field(default_factory=dict)

    @property
    def key(self) -> CorrelationKey:
        return (self.device, self.command.kind, self.sequence)

    @property
    def resolved(self) -> bool:
        return self.future.done()


class Transport(Protocol):
    """What a Device needs from either transport."""

    name: str

    @property
    def device_id(self) -> str: ...

    def bind(self, sink: StateSink) -> None: ...

    async def open(self) -> None: ...

    async def send(self, command: Command, timeout: float | None = None) -> Reply: ...

    async def close(self) -> None: ...
