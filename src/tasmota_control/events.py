"""Device lifecycle, connection and state events, fanned out to subscribers.

Each subscriber owns a bounded queue. A subscriber that falls behind loses
its oldest events rather than slowing down the publisher; ``lagged`` counts
what it missed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Self

from tasmota_control.logging_abstraction import get_logger
from tasmota_control.state.changes import StateChange
from tasmota_control.state.models import DeviceState

logger = get_logger(__name__)

DEFAULT_EVENT_CAPACITY = 256


@dataclass(frozen=True, slots=True)
class DeviceEvent:
    device_id: str

    @property
    def is_lifecycle(self) -> bool:
        return isinstance(self, DeviceAdded | DeviceRemoved)


@dataclass(frozen=True, slots=True)
class DeviceAdded(DeviceEvent):
    pass


@dataclass(frozen=True, slots=True)
class DeviceRemoved(DeviceEvent):
    pass


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged(DeviceEvent):
    """The manager connected or disconnected a device; ``error`` is set when connecting failed."""

    connected: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class DeviceStateChanged(DeviceEvent):
    change: StateChange
    state: DeviceState


class EventSubscription:
    """One subscriber's view of an EventBus; iterate it or await ``get``."""

    def __init__(self, bus: EventBus, capacity: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[DeviceEvent] = asyncio.Queue(maxsize=capacity)
        self.lagged: int = 0

    def _offer(self, event: DeviceEvent) -> None:
        if self._queue.full():
            _ = self._queue.get_nowait()
            self.lagged += 1
        self._queue.put_nowait(event)

    async def get(self) -> DeviceEvent:
        return await self._queue.get()

    def get_nowait(self) -> DeviceEvent:
        """Raises asyncio.QueueEmpty when nothing is waiting."""
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[DeviceEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[DeviceEvent]:
        while True:
            yield await self._queue.get()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class EventBus:
    """Broadcasts every published event to all current subscribers."""

    lp: str = "events:"

    def __init__(self, capacity: int = DEFAULT_EVENT_CAPACITY) -> None:
        if capacity < 1:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self.capacity: int = capacity
        self._subscribers: list[EventSubscription] = []

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription(self, self.capacity)
        self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: DeviceEvent) -> int:
        """Queue ``event`` for every subscriber; returns how many received it."""
        for subscription in self._subscribers:
            subscription._offer(event)
        logger.debug(
            "%s %s to %d subscriber(s)",
            f"{self.lp}publish:",
            type(event).__name__,
            len(self._subscribers),
            extra={"device": event.device_id},
        )
        return len(self._subscribers)
