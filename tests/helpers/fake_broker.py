"""In-memory stand-in for an MQTT broker and aiomqtt clients.

FakeBroker.client_factory plugs into BrokerSession(client_factory=...). Each
connection attempt gets a FakeMqttClient that records what it does on the
broker's event log and receives whatever the broker routes to it.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import aiomqtt

from tasmota_control.config import BrokerConfig

type Responder = Callable[[str, str], list[tuple[str, object]] | None]
type SubscribeHook = Callable[[str], Awaitable[None]]


@dataclass
class FakeMessage:
    topic: str
    payload: bytes


def encode(payload: object) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode()
    return json.dumps(payload).encode()


class FakeMqttClient:
    """Implements the slice of aiomqtt.Client that BrokerSession uses."""

    def __init__(self, broker: FakeBroker, client_id: str) -> None:
        self.broker = broker
        self.client_id = client_id
        self.subscriptions: set[str] = set()
        self.connected = False
        self._queue: asyncio.Queue[FakeMessage | Exception] = asyncio.Queue()

    async def __aenter__(self) -> FakeMqttClient:
        self.broker.connect_attempts += 1
        if self.broker.refuse_connections:
            raise aiomqtt.MqttError("[code:136] Server unavailable")
        self.connected = True
        self.broker.clients.append(self)
        self.broker.events.append(("connect", self.client_id))
        return self

    async def __aexit__(self, *_exc: object) -> None:
        self.connected = False
        if self in self.broker.clients:
            self.broker.clients.remove(self)

    async def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscriptions.add(topic)
        self.broker.events.append(("subscribe", topic))
        if self.broker.on_subscribe is not None:
            await self.broker.on_subscribe(topic)

    async def unsubscribe(self, topic: str) -> None:
        self.subscriptions.discard(topic)
        self.broker.events.append(("unsubscribe", topic))

    async def publish(self, topic: str, payload: Any = None, qos: int = 0, retain: bool = False) -> None:
        if not self.connected:
            raise aiomqtt.MqttError("not connected")
        text = encode(payload if payload is not None else b"").decode()
        self.broker.published.append((topic, text))
        self.broker.events.append(("publish", topic))
        if self.broker.responder is not None:
            for reply_topic, reply_payload in self.broker.responder(topic, text) or ():
                self.broker.deliver(reply_topic, reply_payload)

    @property
    def messages(self) -> AsyncIterator[FakeMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[FakeMessage]:
        while True:
            item = await self._queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, item: FakeMessage | Exception) -> None:
        self._queue.put_nowait(item)


class FakeBroker:
    """Routes published messages to subscribed fake clients."""

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder
        self.clients: list[FakeMqttClient] = []
        self.events: list[tuple[str, str]] = []
        self.published: list[tuple[str, str]] = []
        self.refuse_connections = False
        self.connect_attempts = 0
        self.on_subscribe: SubscribeHook | None = None

    def client_factory(self, _config: BrokerConfig, client_id: str) -> FakeMqttClient:
        return FakeMqttClient(self, client_id)

    def deliver(self, topic: str, payload: object) -> None:
        """Route one message to every client subscribed to a matching filter."""
        message = FakeMessage(topic, encode(payload))
        mqtt_topic = aiomqtt.Topic(topic)
        for client in list(self.clients):
            if any(mqtt_topic.matches(f) for f in client.subscriptions):
                client.push(message)

    def drop_connections(self) -> None:
        """Make every connected client's message stream fail."""
        for client in list(self.clients):
            client.connected = False
            client.push(aiomqtt.MqttError("Disconnected during message iteration"))
        self.clients.clear()

    def commands_for(self, device_topic: str) -> list[tuple[str, str]]:
        prefix = f"cmnd/{device_topic}/"
        return [(t[len(prefix) :], p) for t, p in self.published if t.startswith(prefix)]
