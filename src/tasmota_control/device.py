"""The uniform device handle.

A Device wraps one transport (HTTP or MQTT), the capability gate that guards
it and the state synchronizer that tracks it. Typed operations build a
Command, check it against the gate, send it and decode the typed value from
the reply; the reply's state is merged by the transport as it arrives.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Self

import aiohttp

from tasmota_control import commands
from tasmota_control.capabilities import Capabilities, CapabilityGate, Feature
from tasmota_control.commands import Command, StatusType
from tasmota_control.config import BrokerConfig, HttpConfig
from tasmota_control.correlation import correlation_context
from tasmota_control.exceptions import CommandTimeoutError, ProtocolError, TasmotaConnectionError, TasmotaError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.metrics import registry
from tasmota_control.state.changes import (
    ColorChanged,
    ColorTemperatureChanged,
    ConnectionChanged,
    DimmerChanged,
    EnergyChanged,
    FadeChanged,
    PowerChanged,
    SchemeChanged,
    StateChange,
    SystemChanged,
)
from tasmota_control.state.models import DeviceState, EnergyReading
from tasmota_control.state.parsers import EnergyPayload, update_from_payload
from tasmota_control.state.synchronizer import StateSynchronizer
from tasmota_control.transport.correlator import is_rejection
from tasmota_control.transport.http import HttpTransport
from tasmota_control.transport.mqtt import MqttTransport
from tasmota_control.transport.pool import BrokerPool, default_pool
from tasmota_control.transport.session import BrokerSession
from tasmota_control.transport.types import Reply, Transport
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

if TYPE_CHECKING:
    from tasmota_control.routine import Routine

logger = get_logger(__name__)


def _field(reply: Reply, key: str) -> Any:
    try:
        return reply.body[key]
    except KeyError:
        raise ProtocolError(f"reply to '{reply.command}' has no '{key}'", str(dict(reply.body))) from None


def _decode[T](reply: Reply, key: str, decoder: Callable[[Any], T]) -> T:
    value = _field(reply, key)
    try:
        return decoder(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"bad '{key}' in reply to '{reply.command}': {e}", str(value)) from e


def _on_off(value: object) -> bool:
    return PowerState.parse(value).is_on


class Device:
    """One controllable Tasmota device.

    Handles are shared by reference: every holder sees the same transport and
    the same state. Build one with ``from_http``/``from_broker`` (which query
    capabilities when none are given) or directly from a transport and a
    capability set.
    """

    lp: str = "device:"

    def __init__(
        self,
        transport: Transport,
        capabilities: Capabilities,
        *,
        initial_state: DeviceState | None = None,
    ) -> None:
        self.transport: Transport = transport
        self.capabilities: Capabilities = capabilities
        self.gate: CapabilityGate = CapabilityGate(capabilities)
        self._synchronizer: StateSynchronizer = StateSynchronizer(transport.device_id, initial_state)
        self._closed: bool = False
        self.lp = f"device[{transport.device_id}]:"
        transport.bind(self._synchronizer.apply)

    def __repr__(self) -> str:
        return f"Device({self.transport.name}:{self.device_id}, {self.capabilities})"

    @property
    def device_id(self) -> str:
        return self.transport.device_id

    @property
    def state(self) -> DeviceState:
        """Current immutable state snapshot."""
        return self._synchronizer.state

    @property
    def synchronizer(self) -> StateSynchronizer:
        return self._synchronizer

    @property
    def closed(self) -> bool:
        return self._closed

    # -- construction ----------------------------------------------------

    @classmethod
    async def from_http(
        cls,
        config: HttpConfig | str,
        capabilities: Capabilities | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> Self:
        """Device reached over HTTP; queried with ``Status 0`` when ``capabilities`` is None."""
        if isinstance(config, str):
            config = HttpConfig(host=config)
        return await cls._create(HttpTransport(config, session=session), capabilities)

    @classmethod
    async def from_broker(
        cls,
        session: BrokerSession | BrokerConfig | None,
        topic: str,
        capabilities: Capabilities | None = None,
        *,
        pool: BrokerPool | None = None,
    ) -> Self:
        """Device reached over MQTT.

        Args:
            session: A started session, or a broker config to acquire a pooled session for
            topic: The device's MQTT topic
            capabilities: Static capabilities; queried with ``Status 0`` when None
            pool: Pool to acquire from (the process-wide pool by default)

        """
        if not isinstance(session, BrokerSession):
            session = await (pool or default_pool).acquire(session)
        return await cls._create(MqttTransport(session, topic), capabilities)

    @classmethod
    async def _create(cls, transport: Transport, capabilities: Capabilities | None) -> Self:
        lp = f"{cls.lp}create:"
        await transport.open()
        try:
            if capabilities is not None:
                return cls(transport, capabilities)
            with correlation_context():
                reply = await transport.send(commands.status_all())
                if is_rejection(reply.body):
                    raise ProtocolError(f"{transport.device_id} rejected the capability query", str(dict(reply.body)))
                device = cls(transport, Capabilities.from_status(reply.body))
                device.synchronizer.apply(update_from_payload(reply.body))
            logger.info(
                "%s queried %s: %s",
                lp,
                transport.device_id,
                device.capabilities,
                extra={"partial": reply.partial, "topics": list(reply.topics)},
            )
            return device
        except BaseException:
            await transport.close()
            raise

    async def close(self) -> None:
        """Detach from the transport; idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.transport.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    # -- dispatch --------------------------------------------------------

    async def send_command(self, command: Command, timeout: float | None = None) -> Reply:
        """Gate, send and await one command.

        Raises:
            CapabilityError: The device does not support the command (nothing is sent)
            CommandTimeoutError: No reply before the deadline
            ProtocolError: The device rejected the command or the reply is malformed
            TasmotaConnectionError: The transport is unreachable or closed

        """
        lp = f"{self.lp}send:"
        self.gate.authorize(command)
        if self._closed:
            raise TasmotaConnectionError(f"{self.device_id} is closed", "closed")

        transport = self.transport.name
        with correlation_context() as corr_id:
            started = time.perf_counter()
            logger.debug("%s sending %s", lp, command, extra={"device": self.device_id, "transport": transport, "command": command.name})
            try:
                reply = await self.transport.send(command, timeout)
            except CommandTimeoutError:
                registry.record_command(transport, command.kind.value, "timeout")
                raise
            except TasmotaError:
                registry.record_command(transport, command.kind.value, "error")
                raise
            if is_rejection(reply.body):
                registry.record_command(transport, command.kind.value, "rejected")
                raise ProtocolError(f"{self.device_id} rejected '{command}'", str(dict(reply.body)))

            elapsed = time.perf_counter() - started
            registry.record_command(transport, command.kind.value, "ok")
            registry.record_command_latency(transport, elapsed)
            logger.debug(
                "%s answered in %.3fs",
                lp,
                elapsed,
                extra={
                    "device": self.device_id,
                    "transport": transport,
                    "command": command.name,
                    "correlation_id": corr_id,
                    "partial": reply.partial,
                },
            )
            return reply

    # -- power -----------------------------------------------------------

    async def _power(self, command: Command) -> PowerState:
        reply = await self.send_command(command)
        channel = command.channel or 1
        key = f"POWER{channel}"
        if key not in reply.body and channel == 1:
            key = "POWER"
        return _decode(reply, key, PowerState.parse)

    async def power_on(self, index: PowerIndex | int = 1) -> PowerState:
        return await self._power(commands.power_on(index))

    async def power_off(self, index: PowerIndex | int = 1) -> PowerState:
        return await self._power(commands.power_off(index))

    async def power_toggle(self, index: PowerIndex | int = 1) -> PowerState:
        return await self._power(commands.power_toggle(index))

    async def set_power(self, state: PowerState, index: PowerIndex | int = 1) -> PowerState:
        return await self._power(commands.set_power(state, index))

    async def get_power(self, index: PowerIndex | int = 1) -> PowerState:
        return await self._power(commands.get_power(index))

    # -- light -----------------------------------------------------------

    async def set_dimmer(self, value: Dimmer | int) -> int:
        """Set brightness; returns the level the device reports."""
        dimmer = value if isinstance(value, Dimmer) else Dimmer(value)
        return _decode(await self.send_command(commands.set_dimmer(dimmer)), "Dimmer", int)

    async def step_dimmer(self, up: bool = True) -> int:
        return _decode(await self.send_command(commands.step_dimmer(up)), "Dimmer", int)

    async def get_dimmer(self) -> int:
        return _decode(await self.send_command(commands.get_dimmer()), "Dimmer", int)

    async def set_hsb_color(self, color: HsbColor) -> HsbColor:
        return _decode(await self.send_command(commands.set_hsb_color(color)), "HSBColor", HsbColor.parse)

    async def get_hsb_color(self) -> HsbColor:
        return _decode(await self.send_command(commands.get_hsb_color()), "HSBColor", HsbColor.parse)

    async def set_color_temperature(self, value: ColorTemperature | int) -> ColorTemperature:
        ct = value if isinstance(value, ColorTemperature) else ColorTemperature(value)
        return _decode(await self.send_command(commands.set_color_temperature(ct)), "CT", ColorTemperature)

    async def get_color_temperature(self) -> ColorTemperature:
        return _decode(await self.send_command(commands.get_color_temperature()), "CT", ColorTemperature)

    async def set_scheme(self, scheme: Scheme) -> Scheme:
        return _decode(await self.send_command(commands.set_scheme(scheme)), "Scheme", Scheme)

    async def get_scheme(self) -> Scheme:
        return _decode(await self.send_command(commands.get_scheme()), "Scheme", Scheme)

    async def set_wakeup_duration(self, duration: WakeupDuration | int) -> int:
        """Set how long the wake-up scheme takes to reach full brightness (seconds)."""
        value = duration if isinstance(duration, WakeupDuration) else WakeupDuration(duration)
        return _decode(await self.send_command(commands.set_wakeup_duration(value)), "WakeupDuration", int)

    async def enable_fade(self) -> bool:
        return _decode(await self.send_command(commands.enable_fade()), "Fade", _on_off)

    async def disable_fade(self) -> bool:
        return _decode(await self.send_command(commands.disable_fade()), "Fade", _on_off)

    async def get_fade(self) -> bool:
        return _decode(await self.send_command(commands.get_fade()), "Fade", _on_off)

    async def set_fade_speed(self, speed: FadeSpeed | int) -> int:
        value = speed if isinstance(speed, FadeSpeed) else FadeSpeed(speed)
        return _decode(await self.send_command(commands.set_fade_speed(value)), "Speed", int)

    async def get_fade_speed(self) -> int:
        return _decode(await self.send_command(commands.get_fade_speed()), "Speed", int)

    async def set_fade_at_startup(self, enabled: bool) -> bool:
        return _decode(await self.send_command(commands.set_fade_at_startup(enabled)), "SetOption91", _on_off)

    # -- energy ----------------------------------------------------------

    async def energy(self) -> EnergyReading:
        """Current ENERGY block of a power-monitoring device."""
        reply = await self.send_command(commands.get_energy())
        reading = update_from_payload(reply.body).energy
        if reading is None:
            raise ProtocolError(f"{self.device_id} sent no ENERGY block", str(dict(reply.body)))
        return reading

    async def _reset_energy(self, command: Command) -> EnergyReading:
        reply = await self.send_command(command)
        return _decode(reply, "EnergyReset", lambda v: EnergyPayload.model_validate(v).to_reading())

    async def reset_energy_today(self) -> EnergyReading:
        return await self._reset_energy(commands.reset_energy_today())

    async def reset_energy_yesterday(self) -> EnergyReading:
        return await self._reset_energy(commands.reset_energy_yesterday())

    async def reset_energy_total(self) -> EnergyReading:
        return await self._reset_energy(commands.reset_energy_total())

    # -- status ----------------------------------------------------------

    async def status(self, status_type: StatusType = StatusType.ABBREVIATED) -> Mapping[str, Any]:
        """Raw body of a ``Status`` query (merged across topics for ``StatusType.ALL``)."""
        return (await self.send_command(commands.status(status_type))).body

    async def query_state(self) -> DeviceState:
        """Refresh the state snapshot from the device and return it."""
        await self.send_command(commands.get_state())
        if self.capabilities.supports(Feature.ENERGY):
            await self.energy()
        return self.state

    async def run_routine(self, routine: Routine) -> list[Reply]:
        from tasmota_control.routine import run_routine

        return await run_routine(self, routine)

    # -- listeners -------------------------------------------------------

    def on_change(self, listener: Callable[[StateChange], None]) -> int:
        """Receive every state change; returns a subscription id."""
        return self._synchronizer.listeners.subscribe(listener)

    def on_power_changed(self, listener: Callable[[PowerChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, PowerChanged)  # type: ignore[arg-type]

    def on_dimmer_changed(self, listener: Callable[[DimmerChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, DimmerChanged)  # type: ignore[arg-type]

    def on_color_changed(self, listener: Callable[[ColorChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, ColorChanged)  # type: ignore[arg-type]

    def on_color_temperature_changed(self, listener: Callable[[ColorTemperatureChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, ColorTemperatureChanged)  # type: ignore[arg-type]

    def on_scheme_changed(self, listener: Callable[[SchemeChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, SchemeChanged)  # type: ignore[arg-type]

    def on_fade_changed(self, listener: Callable[[FadeChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, FadeChanged)  # type: ignore[arg-type]

    def on_energy_changed(self, listener: Callable[[EnergyChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, EnergyChanged)  # type: ignore[arg-type]

    def on_system_changed(self, listener: Callable[[SystemChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, SystemChanged)  # type: ignore[arg-type]

    def on_connection_changed(self, listener: Callable[[ConnectionChanged], None]) -> int:
        return self._synchronizer.listeners.subscribe(listener, ConnectionChanged)  # type: ignore[arg-type]

    def unsubscribe(self, subscription_id: int) -> bool:
        return self._synchronizer.listeners.unsubscribe(subscription_id)
