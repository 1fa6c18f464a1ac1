"""MQTT transport for one device on a shared broker session."""

from __future__ import annotations

from tasmota_control.commands import Command
from tasmota_control.exceptions import ProtocolError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.transport.classifier import ClassifiedMessage, to_state_update
from tasmota_control.transport.session import BrokerSession
from tasmota_control.transport.types import Reply, StateSink

logger = get_logger(__name__)


class MqttTransport:
    """Publishes ``cmnd/<topic>/<Command>`` and listens on ``stat/<topic>/+`` and ``tele/<topic>/+``."""

    name: str = "mqtt"

    def __init__(self, session: BrokerSession, device_topic: str) -> None:
        self.session: BrokerSession = session
        self.device_topic: str = device_topic
        self._sink: StateSink | None = None
        self.lp: str = f"mqtt[{device_topic}]:"

    @property
    def device_id(self) -> str:
        return self.device_topic

    @property
    def topics(self) -> tuple[str, str]:
        return (f"stat/{self.device_topic}/+", f"tele/{self.device_topic}/+")

    def bind(self, sink: StateSink) -> None:
        self._sink = sink

    async def open(self) -> None:
        await self.session.attach(self, self.topics, self._on_message)

    async def close(self) -> None:
        await self.session.detach(self)

    async def send(self, command: Command, timeout: float | None = None) -> Reply:
        """Publish ``command`` and wait for its correlated reply.

        Raises:
            CommandTimeoutError: No reply before the deadline
            ProtocolError: The device rejected the command
            TasmotaConnectionError: The session closed before the publish went out

        """
        topic = command.mqtt_topic(self.device_topic)

        async def publish() -> None:
            await self.session.publish(topic, command.payload)

        return await self.session.correlator.send(self.device_topic, command, publish, timeout)

    def _on_message(self, message: ClassifiedMessage) -> None:
        lp = f"{self.lp}message:"
        if self._sink is None:
            return
        try:
            update = to_state_update(message)
        except ProtocolError as err:
            logger.warning(
                "%s dropping malformed %s: %s",
                lp,
                message.topic,
                err.reason,
                extra={"device": self.device_topic, "transport": "mqtt"},
            )
            return
        if update is not None and not update.is_empty:
            self._sink(update)
