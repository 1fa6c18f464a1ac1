"""Registry of devices addressed by id.

The DeviceManager holds a DeviceConfig per device, opens and closes the
Device handles for them, and publishes every add, remove, connection change
and state change on its EventBus. ``watch_device`` follows one device's
state without subscribing to the whole bus.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Self

import aiohttp

from tasmota_control.capabilities import Capabilities
from tasmota_control.config import DeviceConfig
from tasmota_control.device import Device
from tasmota_control.events import (
    DEFAULT_EVENT_CAPACITY,
    ConnectionStateChanged,
    DeviceAdded,
    DeviceRemoved,
    DeviceStateChanged,
    EventBus,
    EventSubscription,
)
from tasmota_control.exceptions import CommandTimeoutError, DeviceNotFoundError, TasmotaConnectionError, TasmotaError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.metrics import registry
from tasmota_control.state.changes import StateChange
from tasmota_control.state.models import DeviceState
from tasmota_control.transport.pool import BrokerPool, default_pool
from tasmota_control.transport.retry_policy import ReconnectPolicy
from tasmota_control.values import ColorTemperature, Dimmer, HsbColor, PowerIndex, PowerState

logger = get_logger(__name__)


class ManagedConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class StateWatch:
    """Latest state of one managed device; ``changed`` waits for the next one."""

    def __init__(self, owner: _ManagedDevice) -> None:
        self._owner = owner
        self._state: DeviceState = owner.state
        self._version = 0
        self._seen = 0
        self._changed = asyncio.Event()

    @property
    def current(self) -> DeviceState:
        return self._state

    def _update(self, state: DeviceState) -> None:
        self._state = state
        self._version += 1
        self._changed.set()

    async def changed(self) -> DeviceState:
        """Return the first state newer than the last one this watch handed out."""
        while self._seen == self._version:
            self._changed.clear()
            await self._changed.wait()
        self._seen = self._version
        return self._state

    def close(self) -> None:
        self._owner.watches.discard(self)


@dataclass(eq=False)
class _ManagedDevice:
    device_id: str
    config: DeviceConfig
    capabilities: Capabilities | None
    state: DeviceState = field(default_factory=DeviceState)
    connection: ManagedConnectionState = ManagedConnectionState.DISCONNECTED
    device: Device | None = None
    subscription: int | None = None
    last_error: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    watches: set[StateWatch] = field(default_factory=set)


class DeviceManager:
    """Devices by id, with connect/disconnect and a broadcast event stream.

    Connecting queries capabilities with ``Status 0`` unless the config
    carries them, retrying unreachable devices ``connect_retries`` times with
    the reconnect policy's backoff. MQTT devices share sessions through the
    broker pool.
    """

    lp: str = "manager:"

    def __init__(
        self,
        *,
        pool: BrokerPool | None = None,
        http_session: aiohttp.ClientSession | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
        event_capacity: int = DEFAULT_EVENT_CAPACITY,
    ) -> None:
        self.pool: BrokerPool = pool or default_pool
        self.http_session: aiohttp.ClientSession | None = http_session
        self.reconnect_policy: ReconnectPolicy = reconnect_policy or ReconnectPolicy()
        self.events: EventBus = EventBus(event_capacity)
        self._devices: dict[str, _ManagedDevice] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def subscribe(self) -> EventSubscription:
        return self.events.subscribe()

    # -- registry --------------------------------------------------------

    def add_device(self, config: DeviceConfig) -> str:
        """Register ``config`` under a new id; nothing is connected yet."""
        device_id = uuid.uuid4().hex
        self._devices[device_id] = _ManagedDevice(device_id, config, config.capabilities)
        logger.info(
            "%s added %s",
            f"{self.lp}add:",
            config.display_name,
            extra={"device": device_id, "transport": config.transport},
        )
        self._record_counts()
        self.events.publish(DeviceAdded(device_id))
        return device_id

    async def remove_device(self, device_id: str) -> bool:
        """Disconnect and forget ``device_id``; False if it was not registered."""
        managed = self._devices.pop(device_id, None)
        if managed is None:
            return False
        async with managed.lock:
            if managed.device is not None:
                await self._close(managed)
        self._record_counts()
        self.events.publish(DeviceRemoved(device_id))
        return True

    def device_ids(self) -> list[str]:
        return list(self._devices)

    def capabilities(self, device_id: str) -> Capabilities | None:
        """Configured or queried capabilities; None until known or for unknown ids."""
        managed = self._devices.get(device_id)
        return managed.capabilities if managed is not None else None

    def friendly_name(self, device_id: str) -> str | None:
        managed = self._devices.get(device_id)
        return managed.config.display_name if managed is not None else None

    def connection_state(self, device_id: str) -> ManagedConnectionState | None:
        managed = self._devices.get(device_id)
        return managed.connection if managed is not None else None

    def connection_error(self, device_id: str) -> str | None:
        """Why the last connect failed; cleared by a successful one."""
        managed = self._devices.get(device_id)
        return managed.last_error if managed is not None else None

    def is_connected(self, device_id: str) -> bool:
        managed = self._devices.get(device_id)
        return managed is not None and managed.device is not None

    def get_state(self, device_id: str) -> DeviceState | None:
        """Last known state; kept across disconnects, None for unknown ids."""
        managed = self._devices.get(device_id)
        return managed.state if managed is not None else None

    def watch_device(self, device_id: str) -> StateWatch | None:
        managed = self._devices.get(device_id)
        if managed is None:
            return None
        watch = StateWatch(managed)
        managed.watches.add(watch)
        return watch

    # -- connections -----------------------------------------------------

    async def connect(self, device_id: str) -> Device:
        """Open the device handle for ``device_id``; a no-op when already connected.

        Raises:
            DeviceNotFoundError: Unknown id
            TasmotaConnectionError: Still unreachable after the configured retries
            CommandTimeoutError: The capability query went unanswered on every attempt
            ProtocolError: The device rejected the capability query

        """
        lp = f"{self.lp}connect:"
        managed = self._require(device_id)
        async with managed.lock:
            if managed.device is not None:
                return managed.device
            managed.connection = ManagedConnectionState.CONNECTING
            transport = managed.config.transport
            try:
                device = await self._open_with_retries(managed)
            except TasmotaError as err:
                managed.connection = ManagedConnectionState.FAILED
                managed.last_error = str(err)
                registry.record_device_connect(transport, "failed")
                self._record_counts()
                logger.warning("%s giving up: %s", lp, err, extra={"device": device_id, "transport": transport})
                self.events.publish(ConnectionStateChanged(device_id, connected=False, error=str(err)))
                raise
            if self._devices.get(device_id) is not managed:
                # removed while connecting
                await device.close()
                raise DeviceNotFoundError(device_id)

            managed.device = device
            managed.capabilities = device.capabilities
            managed.connection = ManagedConnectionState.CONNECTED
            managed.last_error = None
            managed.subscription = device.on_change(partial(self._on_change, managed))
            self._set_state(managed, device.state)
        registry.record_device_connect(transport, "ok")
        self._record_counts()
        logger.info("%s connected %s", lp, managed.config.display_name, extra={"device": device_id, "transport": transport})
        self.events.publish(ConnectionStateChanged(device_id, connected=True))
        return device

    async def _open_with_retries(self, managed: _ManagedDevice) -> Device:
        lp = f"{self.lp}open:"
        config = managed.config
        attempt = 0
        while True:
            try:
                return await self._open(config, managed.capabilities)
            except (TasmotaConnectionError, CommandTimeoutError) as err:
                if attempt >= config.connect_retries:
                    raise
                delay = self.reconnect_policy.get_delay(attempt)
                attempt += 1
                logger.info(
                    "%s attempt %d of %d failed (%s), retrying in %.2fs",
                    lp,
                    attempt,
                    config.connect_retries + 1,
                    err,
                    delay,
                    extra={"device": managed.device_id, "transport": config.transport},
                )
                await asyncio.sleep(delay)

    async def _open(self, config: DeviceConfig, capabilities: Capabilities | None) -> Device:
        if config.http is not None:
            return await Device.from_http(config.http, capabilities, session=self.http_session)
        return await Device.from_broker(config.broker, str(config.topic), capabilities, pool=self.pool)

    async def disconnect(self, device_id: str) -> None:
        """Close the device handle; the last known state is kept.

        Raises:
            DeviceNotFoundError: Unknown id

        """
        managed = self._require(device_id)
        async with managed.lock:
            if managed.device is None:
                return
            await self._close(managed)
        self._record_counts()
        self.events.publish(ConnectionStateChanged(device_id, connected=False))

    async def _close(self, managed: _ManagedDevice) -> None:
        device, managed.device = managed.device, None
        managed.connection = ManagedConnectionState.DISCONNECTED
        if device is None:
            return
        if managed.subscription is not None:
            device.unsubscribe(managed.subscription)
            managed.subscription = None
        await device.close()

    async def close(self) -> None:
        """Disconnect every device; registrations stay."""
        for device_id in list(self._devices):
            await self.disconnect(device_id)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    # -- commands --------------------------------------------------------

    def device(self, device_id: str) -> Device:
        """The connected handle for ``device_id``.

        Raises:
            DeviceNotFoundError: Unknown id
            TasmotaConnectionError: The device is not connected

        """
        managed = self._require(device_id)
        if managed.device is None:
            raise TasmotaConnectionError(f"{managed.config.display_name} is not connected", managed.connection.value)
        return managed.device

    async def power_on(self, device_id: str, index: PowerIndex | int = 1) -> PowerState:
        return await self.device(device_id).power_on(index)

    async def power_off(self, device_id: str, index: PowerIndex | int = 1) -> PowerState:
        return await self.device(device_id).power_off(index)

    async def power_toggle(self, device_id: str, index: PowerIndex | int = 1) -> PowerState:
        return await self.device(device_id).power_toggle(index)

    async def set_dimmer(self, device_id: str, value: Dimmer | int) -> int:
        return await self.device(device_id).set_dimmer(value)

    async def set_hsb_color(self, device_id: str, color: HsbColor) -> HsbColor:
        return await self.device(device_id).set_hsb_color(color)

    async def set_color_temperature(self, device_id: str, value: ColorTemperature | int) -> ColorTemperature:
        return await self.device(device_id).set_color_temperature(value)

    # -- internals -------------------------------------------------------

    def _require(self, device_id: str) -> _ManagedDevice:
        managed = self._devices.get(device_id)
        if managed is None:
            raise DeviceNotFoundError(device_id)
        return managed

    def _on_change(self, managed: _ManagedDevice, change: StateChange) -> None:
        if managed.device is None:
            return
        state = managed.device.state
        self._set_state(managed, state)
        self.events.publish(DeviceStateChanged(managed.device_id, change, state))

    @staticmethod
    def _set_state(managed: _ManagedDevice, state: DeviceState) -> None:
        managed.state = state
        for watch in list(managed.watches):
            watch._update(state)

    def _record_counts(self) -> None:
        counts = Counter(m.connection.value for m in self._devices.values())
        registry.record_managed_devices({s.value: counts.get(s.value, 0) for s in ManagedConnectionState})
