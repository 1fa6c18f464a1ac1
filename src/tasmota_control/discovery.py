"""Time-boxed device discovery over a broker session.

Every Tasmota device listens on the group topic, so one ``Status 0`` sent
there makes all of them report. Retained last-will and state messages fill
in devices that are slow to answer.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from tasmota_control.capabilities import infer_capabilities
from tasmota_control.const import DISCOVERY_TOPIC_FILTERS, TASMOTA_DISCOVERY_TIMEOUT, TASMOTA_GROUP_TOPIC
from tasmota_control.device import Device
from tasmota_control.exceptions import ProtocolError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.metrics import registry
from tasmota_control.state.models import DeviceState
from tasmota_control.transport.classifier import ClassifiedMessage, MessageKind, to_state_update
from tasmota_control.transport.mqtt import MqttTransport
from tasmota_control.transport.session import BrokerSession

logger = get_logger(__name__)

type DiscoveryResult = list[tuple[Device, DeviceState]]


class _Observations:
    """Messages seen during the window, grouped by device topic in arrival order."""

    def __init__(self) -> None:
        self.by_device: dict[str, list[ClassifiedMessage]] = {}
        self.closed = False

    def observe(self, message: ClassifiedMessage) -> None:
        if self.closed:
            return
        if message.prefix == "stat" and not message.suffix.startswith("STATUS"):
            return
        if message.prefix == "tele" and message.suffix not in ("LWT", "STATE"):
            return
        if message.kind is MessageKind.IGNORED:
            return
        self.by_device.setdefault(message.device_topic, []).append(message)

    def sections(self, device_topic: str) -> tuple[Mapping[str, Any] | None, dict[str, Any], dict[str, Any]]:
        """Status, state and sensor sections assembled from one device's messages."""
        status: Mapping[str, Any] | None = None
        state: dict[str, Any] = {}
        sensors: dict[str, Any] = {}
        for message in self.by_device[device_topic]:
            body = message.body or {}
            if isinstance(body.get("Status"), Mapping):
                status = body["Status"]
            if isinstance(body.get("StatusSTS"), Mapping):
                state.update(body["StatusSTS"])
            if isinstance(body.get("StatusSNS"), Mapping):
                sensors.update(body["StatusSNS"])
            if message.prefix == "tele" and message.suffix == "STATE":
                state.update(body)
        return status, state, sensors


async def discover(
    session: BrokerSession,
    timeout: float | None = None,
    *,
    group_topic: str = TASMOTA_GROUP_TOPIC,
) -> DiscoveryResult:
    """Find the devices on ``session``'s broker within ``timeout`` seconds.

    Args:
        session: A started broker session
        timeout: Collection window (TASMOTA_DISCOVERY_TIMEOUT by default)
        group_topic: Group topic every device subscribes to

    Returns:
        One (device, initial state) pair per device topic that reported in
        the window; empty when nothing answered

    Raises:
        TasmotaConnectionError: The session is closed or was never started

    """
    lp = "discovery:"
    window = timeout if timeout is not None else TASMOTA_DISCOVERY_TIMEOUT
    loop = asyncio.get_running_loop()
    deadline = loop.time() + window
    observations = _Observations()

    await session.attach(observations, DISCOVERY_TOPIC_FILTERS, observations.observe)
    try:
        try:
            async with asyncio.timeout_at(deadline):
                await session.publish(f"cmnd/{group_topic}/Status", "0")
        except TimeoutError:
            logger.warning("%s broker unavailable for the whole %.1fs window", lp, window)
        remaining = deadline - loop.time()
        if remaining > 0:
            await asyncio.sleep(remaining)
        # devices reporting from here on missed the window
        observations.closed = True
        results = await _build_devices(session, observations)
    finally:
        await session.detach(observations)

    registry.record_discovery(len(results))
    logger.info("%s found %d device(s) in %.1fs", lp, len(results), window)
    return results


async def _build_devices(session: BrokerSession, observations: _Observations) -> DiscoveryResult:
    lp = "discovery:build:"
    results: DiscoveryResult = []
    for device_topic, messages in list(observations.by_device.items()):
        try:
            capabilities = infer_capabilities(*observations.sections(device_topic))
        except ProtocolError as err:
            logger.warning("%s skipping %s: %s", lp, device_topic, err.reason)
            continue

        transport = MqttTransport(session, device_topic)
        device = Device(transport, capabilities)
        await transport.open()
        for message in messages:
            try:
                update = to_state_update(message)
            except ProtocolError as err:
                logger.debug("%s %s: ignoring %s (%s)", lp, device_topic, message.topic, err.reason)
                continue
            if update is not None and not update.is_empty:
                device.synchronizer.apply(update)
        logger.debug("%s %s -> %s", lp, device_topic, capabilities)
        results.append((device, device.state))
    return results
