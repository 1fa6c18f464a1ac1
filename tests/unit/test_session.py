"""Unit tests for the shared broker session, pool and MQTT transport."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from tasmota_control import commands
from tasmota_control.config import BrokerConfig
from tasmota_control.exceptions import TasmotaConnectionError
from tasmota_control.transport.classifier import MessageKind
from tasmota_control.transport.mqtt import MqttTransport
from tasmota_control.transport.pool import BrokerPool
from tasmota_control.transport.retry_policy import ReconnectPolicy
from tasmota_control.transport.session import BrokerSession, SessionState
from tests.helpers.expectations import expect_async_exception, wait_until
from tests.helpers.fake_broker import FakeBroker
from tests.helpers.tasmota_device import tasmota_responder

type SessionFactory = Callable[..., BrokerSession]


class TestReconnectPolicy:
    def test_exponential_and_capped(self) -> None:
        policy = ReconnectPolicy(1.0, 5.0, jitter_factor=0.0)
        assert [policy.get_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_bounds(self) -> None:
        policy = ReconnectPolicy(2.0, 30.0, jitter_factor=0.5)
        for _ in range(20):
            assert 2.0 <= policy.get_delay(0) <= 3.0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_connects_and_subscribes_attached_topics(
        self,
        broker: FakeBroker,
        make_session: SessionFactory,
    ) -> None:
        session = make_session()
        await session.attach("owner", ["stat/plug/+"], MagicMock())
        async with session:
            assert session.state is SessionState.CONNECTED
            assert ("subscribe", "stat/plug/+") in broker.events
        assert session.state is SessionState.DISCONNECTED
        assert session.closed

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        session = make_session()
        await session.start()
        await session.start()
        assert broker.connect_attempts == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_publish_before_start_fails(self, make_session: SessionFactory) -> None:
        session = make_session()
        err = await expect_async_exception(session.publish("cmnd/plug/Power", ""), TasmotaConnectionError)
        assert "not started" in err.reason

    @pytest.mark.asyncio
    async def test_publish_after_close_fails(self, make_session: SessionFactory) -> None:
        session = make_session()
        await session.start()
        await session.close()
        _ = await expect_async_exception(session.publish("cmnd/plug/Power", ""), TasmotaConnectionError)

    @pytest.mark.asyncio
    async def test_start_timeout_closes_session(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        broker.refuse_connections = True
        session = make_session()
        _ = await expect_async_exception(session.start(timeout=0.1), TasmotaConnectionError)
        assert session.closed
        assert broker.connect_attempts >= 2

    @pytest.mark.asyncio
    async def test_state_listeners(self, make_session: SessionFactory) -> None:
        session = make_session()
        seen: list[SessionState] = []
        session.on_state_change(seen.append)
        await session.start()
        await session.close()
        assert seen == [SessionState.CONNECTING, SessionState.CONNECTED, SessionState.DISCONNECTED]

    @pytest.mark.asyncio
    async def test_restart_is_a_fresh_connect(self, make_session: SessionFactory) -> None:
        session = make_session()
        seen: list[SessionState] = []
        reconnected = MagicMock()
        session.on_state_change(seen.append)
        session.on_reconnected(reconnected)
        await session.start()
        await session.close()
        seen.clear()

        await session.start()

        assert seen == [SessionState.CONNECTING, SessionState.CONNECTED]
        reconnected.assert_not_called()
        await session.close()


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_attach_while_connected_subscribes_now(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        async with make_session() as session:
            await session.attach("owner", ["tele/plug/+"], MagicMock())
            assert ("subscribe", "tele/plug/+") in broker.events
            assert session.attached_count == 1

    @pytest.mark.asyncio
    async def test_detach_keeps_shared_filters(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        async with make_session() as session:
            await session.attach("a", ["stat/+/+", "tele/a/+"], MagicMock())
            await session.attach("b", ["stat/+/+"], MagicMock())

            await session.detach("a")

            assert ("unsubscribe", "tele/a/+") in broker.events
            assert ("unsubscribe", "stat/+/+") not in broker.events
            assert session.topics == {"stat/+/+"}

    @pytest.mark.asyncio
    async def test_dispatch_reaches_matching_handlers_only(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        plug = MagicMock()
        bulb = MagicMock(side_effect=RuntimeError("listener bug"))
        everyone = MagicMock()
        async with make_session() as session:
            await session.attach("plug", ["tele/plug/+"], plug)
            await session.attach("bulb", ["tele/bulb/+"], bulb)
            await session.attach("all", ["tele/+/+"], everyone)

            broker.deliver("tele/bulb/STATE", {"POWER": "ON"})
            broker.deliver("tele/plug/LWT", "Online")
            await wait_until(lambda: everyone.call_count == 2)

        assert plug.call_count == 1
        assert plug.call_args.args[0].kind is MessageKind.LAST_WILL
        assert bulb.call_count == 1

    @pytest.mark.asyncio
    async def test_pooled_session_closes_when_idle(self, make_session: SessionFactory) -> None:
        idle = MagicMock()
        session = make_session(close_when_idle=True, on_idle=idle)
        await session.start()
        await session.attach("only", ["tele/plug/+"], MagicMock())

        await session.detach("only")

        assert session.closed
        idle.assert_called_once_with(session)


class TestReconnect:
    @pytest.mark.asyncio
    async def test_resubscribes_before_reconnected_signal(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        session = make_session()
        session.on_reconnected(lambda: broker.events.append(("reconnected", "")))
        await session.attach("plug", ["stat/plug/+", "tele/plug/+"], MagicMock())
        await session.start()
        broker.events.clear()

        broker.drop_connections()
        await wait_until(lambda: ("reconnected", "") in broker.events)

        assert broker.events == [
            ("connect", session.client_id),
            ("subscribe", "stat/plug/+"),
            ("subscribe", "tele/plug/+"),
            ("reconnected", ""),
        ]
        assert session.is_connected
        await session.close()

    @pytest.mark.asyncio
    async def test_command_right_after_reconnect_succeeds(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        broker.responder = tasmota_responder("plug")
        session = make_session()
        await session.start()
        transport = MqttTransport(session, "plug")
        await transport.open()

        broker.drop_connections()
        reply = await transport.send(commands.power_on(), timeout=1.0)

        assert reply.body == {"POWER": "ON"}
        assert broker.connect_attempts == 2
        await transport.close()
        await session.close()

    @pytest.mark.asyncio
    async def test_in_flight_command_survives_disconnect(self, broker: FakeBroker, make_session: SessionFactory) -> None:
        session = make_session()
        await session.start()
        transport = MqttTransport(session, "plug")
        await transport.open()

        broker.refuse_connections = True
        broker.drop_connections()
        await wait_until(lambda: not session.is_connected)

        async def reconnect_and_answer() -> None:
            broker.refuse_connections = False
            await wait_until(lambda: session.is_connected)
            broker.deliver("stat/plug/RESULT", {"POWER": "OFF"})

        answer = asyncio.create_task(reconnect_and_answer())
        reply = await transport.send(commands.power_off(), timeout=2.0)
        await answer

        assert reply.body == {"POWER": "OFF"}
        assert ("cmnd/plug/Power1", "0") in broker.published
        await session.close()


class TestPool:
    @pytest.mark.asyncio
    async def test_one_session_per_endpoint(self, broker: FakeBroker, broker_config: BrokerConfig) -> None:
        pool = BrokerPool(client_factory=broker.client_factory)
        first = await pool.acquire(broker_config)
        again = await pool.acquire(broker_config.model_copy(update={"command_timeout": 2.0}))
        other = await pool.acquire(broker_config.model_copy(update={"username": "someone"}))

        assert first is again
        assert first is not other
        assert len(pool) == 2
        await pool.close_all()
        assert len(pool) == 0

    @pytest.mark.asyncio
    async def test_idle_session_is_forgotten(self, broker: FakeBroker, broker_config: BrokerConfig) -> None:
        pool = BrokerPool(client_factory=broker.client_factory)
        session = await pool.acquire(broker_config)
        transport = MqttTransport(session, "plug")
        await transport.open()

        await transport.close()

        assert session.closed
        assert broker_config not in pool
        replacement = await pool.acquire(broker_config)
        assert replacement is not session
        await pool.close_all()

    @pytest.mark.asyncio
    async def test_release_keeps_attached_session(self, broker: FakeBroker, broker_config: BrokerConfig) -> None:
        pool = BrokerPool(client_factory=broker.client_factory)
        session = await pool.acquire(broker_config)
        await session.attach("device", ["tele/plug/+"], MagicMock())

        await pool.release(session)
        assert not session.closed

        await session.detach("device")
        await pool.release(session)
        assert session.closed
        assert len(pool) == 0

    @pytest.mark.asyncio
    async def test_unreachable_broker_not_pooled(self, broker: FakeBroker, broker_config: BrokerConfig) -> None:
        broker.refuse_connections = True
        pool = BrokerPool(client_factory=broker.client_factory)
        _ = await expect_async_exception(pool.acquire(broker_config), TasmotaConnectionError)
        assert len(pool) == 0
