"""Shared MQTT broker session.

One BrokerSession owns one aiomqtt client and one reader task. Every device
transport on the same broker attaches to it with its topic filters and a
handler; inbound messages are classified once, offered to the correlator,
then fanned out to the handlers whose filters match.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

import aiomqtt

from tasmota_control.config import BrokerConfig
from tasmota_control.const import MQTT_QOS
from tasmota_control.exceptions import TasmotaConnectionError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.metrics import registry
from tasmota_control.transport.classifier import ClassifiedMessage, MessageKind, classify_message
from tasmota_control.transport.correlator import Correlator
from tasmota_control.transport.retry_policy import ReconnectPolicy

logger = get_logger(__name__)

type MessageHandler = Callable[[ClassifiedMessage], object]
type ClientFactory = Callable[[BrokerConfig, str], Any]


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def default_client_factory(config: BrokerConfig, client_id: str) -> aiomqtt.Client:
    return aiomqtt.Client(
        hostname=config.host,
        port=config.port,
        username=config.username,
        password=config.password,
        identifier=client_id,
        keepalive=config.keepalive,
    )


def _payload_text(payload: object) -> str:
    if payload is None:
        return ""
    if isinstance(payload, bytes | bytearray):
        return payload.decode("utf-8", errors="replace")
    return str(payload)


class BrokerSession:
    """Connection to one broker shared by any number of device transports.

    The session reconnects on its own with exponential backoff. After every
    (re)connect it restores the subscriptions of all attached transports
    before it reports CONNECTED, so a command published after a reconnect
    can never race its own reply subscription.
    """

    lp: str = "session:"

    def __init__(
        self,
        config: BrokerConfig | None = None,
        *,
        client_factory: ClientFactory | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
        close_when_idle: bool = False,
        on_idle: Callable[[BrokerSession], object] | None = None,
    ) -> None:
        """Create a session; nothing connects until ``start``.

        Args:
            config: Broker endpoint; defaults to the TASMOTA_MQTT_* environment
            client_factory: Builds the MQTT client for each connection attempt
            reconnect_policy: Backoff between attempts
            close_when_idle: Close once the last transport detaches (pooled sessions)
            on_idle: Called after an idle close

        """
        self.config: BrokerConfig = config or BrokerConfig()
        self.client_id: str = self.config.client_id or f"tasmota-control-{uuid.uuid4().hex[:12]}"
        self.correlator: Correlator = Correlator(self.config.command_timeout)
        self.close_when_idle: bool = close_when_idle
        self._client_factory: ClientFactory = client_factory or default_client_factory
        self._policy: ReconnectPolicy = reconnect_policy or ReconnectPolicy(
            base_delay_seconds=self.config.reconnect_base_delay,
            max_delay_seconds=self.config.reconnect_max_delay,
        )
        self._on_idle = on_idle
        self._state: SessionState = SessionState.DISCONNECTED
        self._client: Any = None
        self._run_task: asyncio.Task[None] | None = None
        self._connected: asyncio.Event = asyncio.Event()
        self._closing: bool = False
        self._connections: int = 0
        self._attachments: dict[object, tuple[frozenset[str], MessageHandler]] = {}
        self._subscribed: set[str] = set()
        self._reconnected_listeners: list[Callable[[], object]] = []
        self._state_listeners: list[Callable[[SessionState], object]] = []
        self.lp = f"session[{self.config.label}]:"

    # -- properties -----------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def closed(self) -> bool:
        return self._closing

    @property
    def topics(self) -> frozenset[str]:
        """Union of every attached transport's filters."""
        merged: set[str] = set()
        for filters, _ in self._attachments.values():
            merged |= filters
        return frozenset(merged)

    @property
    def attached_count(self) -> int:
        return len(self._attachments)

    def on_reconnected(self, callback: Callable[[], object]) -> None:
        """Call ``callback`` after every reconnect, once subscriptions are restored."""
        self._reconnected_listeners.append(callback)

    def on_state_change(self, callback: Callable[[SessionState], object]) -> None:
        self._state_listeners.append(callback)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("%s %s -> %s", self.lp, self._state.value, state.value)
        self._state = state
        registry.record_session_state(self.config.label, state.value)
        for callback in list(self._state_listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("%s state listener failed", self.lp)

    # -- lifecycle ------------------------------------------------------

    async def start(self, wait: bool = True, timeout: float | None = None) -> None:
        """Start the connection loop; idempotent.

        Args:
            wait: Block until the first connection is established
            timeout: How long to wait (defaults to the command timeout)

        Raises:
            TasmotaConnectionError: Not connected within ``timeout``; the session is closed

        """
        lp = f"{self.lp}start:"
        if self._run_task is None:
            self._closing = False
            self._connected.clear()
            self._connections = 0
            logger.info("%s connecting to broker as %s", lp, self.client_id)
            self._run_task = asyncio.create_task(self._run(), name=f"tasmota-session-{self.config.label}")
        if not wait:
            return
        limit = timeout if timeout is not None else self.config.command_timeout
        try:
            async with asyncio.timeout(limit):
                await self._connected.wait()
        except TimeoutError:
            state = self._state.value
            await self.close()
            raise TasmotaConnectionError(f"no broker connection to {self.config.label} within {limit}s", state) from None
        if self._closing:
            raise TasmotaConnectionError(f"session to {self.config.label} closed", self._state.value)

    async def close(self) -> None:
        lp = f"{self.lp}close:"
        self._closing = True
        task, self._run_task = self._run_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        # wake anything blocked in publish() so it sees the session is closed
        self._connected.set()
        self._set_state(SessionState.DISCONNECTED)
        logger.info("%s session closed", lp)

    async def __aenter__(self) -> BrokerSession:
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def _run(self) -> None:
        lp = f"{self.lp}run:"
        attempt = 0
        while not self._closing:
            self._set_state(SessionState.RECONNECTING if self._connections else SessionState.CONNECTING)
            client = self._client_factory(self.config, self.client_id)
            try:
                async with client:
                    self._client = client
                    attempt = 0
                    await self._on_connected(client)
                    async for message in client.messages:
                        self._dispatch(message)
                logger.warning("%s broker closed the message stream", lp)
            except aiomqtt.MqttError as err:
                logger.warning("%s broker connection lost: %s", lp, err)
            finally:
                self._client = None
                self._connected.clear()
                self._subscribed.clear()
            if self._closing:
                break
            self._set_state(SessionState.DISCONNECTED)
            delay = self._policy.get_delay(attempt)
            attempt += 1
            registry.record_reconnection(self.config.label)
            logger.info("%s reconnecting in %.2fs (attempt %d)", lp, delay, attempt)
            await asyncio.sleep(delay)

    async def _on_connected(self, client: Any) -> None:
        lp = f"{self.lp}connected:"
        # transports may attach while we are subscribing; loop until nothing is missing
        while missing := self.topics - self._subscribed:
            for topic_filter in sorted(missing):
                await client.subscribe(topic_filter, qos=MQTT_QOS)
                self._subscribed.add(topic_filter)
        self._connections += 1
        self._set_state(SessionState.CONNECTED)
        self._connected.set()
        logger.info(
            "%s connected to %s, %d subscriptions restored",
            lp,
            self.config.label,
            len(self._subscribed),
            extra={"connections": self._connections},
        )
        if self._connections > 1:
            for callback in list(self._reconnected_listeners):
                try:
                    callback()
                except Exception:
                    logger.exception("%s reconnect listener failed", lp)

    # -- publish / subscribe ---------------------------------------------

    async def publish(self, topic: str, payload: str, qos: int = MQTT_QOS, retain: bool = False) -> None:
        """Publish once connected, retrying across reconnects.

        Callers bound the wait themselves (the correlator's deadline covers it).

        Raises:
            TasmotaConnectionError: The session is not started or was closed

        """
        lp = f"{self.lp}publish:"
        if self._run_task is None and not self._connected.is_set():
            raise TasmotaConnectionError("session not started", self._state.value)
        while True:
            if self._closing:
                raise TasmotaConnectionError("session closed", self._state.value)
            await self._connected.wait()
            if self._closing:
                raise TasmotaConnectionError("session closed", self._state.value)
            client = self._client
            if client is None:
                await asyncio.sleep(0)
                continue
            try:
                await client.publish(topic, payload, qos=qos, retain=retain)
            except aiomqtt.MqttError as err:
                logger.warning("%s publish to %s failed: %s", lp, topic, err)
                await asyncio.sleep(self._policy.base_delay_seconds)
            else:
                logger.debug("%s %s <- %r", lp, topic, payload)
                return

    async def attach(self, owner: object, topics: Iterable[str], handler: MessageHandler) -> None:
        """Register ``owner``'s filters and handler, subscribing now if connected."""
        lp = f"{self.lp}attach:"
        filters = frozenset(topics)
        self._attachments[owner] = (filters, handler)
        client = self._client
        if self._state is not SessionState.CONNECTED or client is None:
            return
        for topic_filter in sorted(filters - self._subscribed):
            try:
                await client.subscribe(topic_filter, qos=MQTT_QOS)
            except aiomqtt.MqttError as err:
                # restored by the next reconnect
                logger.warning("%s subscribe to %s failed: %s", lp, topic_filter, err)
            else:
                self._subscribed.add(topic_filter)

    async def detach(self, owner: object) -> None:
        """Drop ``owner``; unsubscribe filters no other transport needs."""
        lp = f"{self.lp}detach:"
        entry = self._attachments.pop(owner, None)
        if entry is None:
            return
        orphaned = entry[0] - self.topics
        client = self._client
        for topic_filter in sorted(orphaned & self._subscribed):
            self._subscribed.discard(topic_filter)
            if client is None:
                continue
            try:
                await client.unsubscribe(topic_filter)
            except aiomqtt.MqttError as err:
                logger.warning("%s unsubscribe from %s failed: %s", lp, topic_filter, err)
        if self.close_when_idle and not self._attachments:
            logger.debug("%s last transport detached, closing", lp)
            await self.close()
            if self._on_idle is not None:
                self._on_idle(self)

    # -- inbound ---------------------------------------------------------

    def _dispatch(self, message: Any) -> None:
        lp = f"{self.lp}dispatch:"
        topic = str(message.topic)
        classified = classify_message(topic, _payload_text(message.payload))
        registry.record_inbound_message(classified.kind.value)
        if classified.kind is MessageKind.IGNORED:
            logger.debug("%s ignoring %s", lp, topic)
            return

        self.correlator.offer(classified)

        mqtt_topic = aiomqtt.Topic(topic)
        for owner, (filters, handler) in list(self._attachments.items()):
            if not any(mqtt_topic.matches(f) for f in filters):
                continue
            try:
                handler(classified)
            except Exception:
                logger.exception("%s handler for %r failed on %s", lp, owner, topic)
