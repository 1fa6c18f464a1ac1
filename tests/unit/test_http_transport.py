"""Unit tests for the HTTP transport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from tasmota_control import commands
from tasmota_control.config import HttpConfig
from tasmota_control.exceptions import CommandTimeoutError, ProtocolError, TasmotaConnectionError
from tasmota_control.transport.http import HttpTransport
from tasmota_control.values import PowerState
from tests.helpers.expectations import expect_async_exception


def _session(status: int = 200, body: object = None) -> MagicMock:
    text = body if isinstance(body, str) else json.dumps(body if body is not None else {})
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=text)
    session = MagicMock()
    session.closed = False
    session.get = AsyncMock(return_value=response)
    session.close = AsyncMock()
    return session


class TestRequest:
    @pytest.mark.asyncio
    async def test_builds_cm_request(self) -> None:
        session = _session(body={"POWER": "ON"})
        transport = HttpTransport(HttpConfig(host="10.0.0.5", username="admin", password="pw"), session=session)

        reply = await transport.send(commands.power_on())

        assert reply.body == {"POWER": "ON"}
        assert reply.device == "10.0.0.5"
        args, kwargs = session.get.call_args
        assert args == ("http://10.0.0.5/cm",)
        assert kwargs["params"] == {"cmnd": "Power1 1", "user": "admin", "password": "pw"}
        assert isinstance(kwargs["timeout"], aiohttp.ClientTimeout)

    @pytest.mark.asyncio
    async def test_non_default_port(self) -> None:
        session = _session(body={"Dimmer": 20})
        transport = HttpTransport(HttpConfig(host="bulb.local", port=8080), session=session)

        await transport.send(commands.get_dimmer())

        assert session.get.call_args.args == ("http://bulb.local:8080/cm",)
        assert session.get.call_args.kwargs["params"] == {"cmnd": "Dimmer"}

    @pytest.mark.asyncio
    async def test_reply_state_goes_to_sink(self) -> None:
        transport = HttpTransport(HttpConfig(host="h"), session=_session(body={"POWER2": "OFF"}))
        sink = MagicMock()
        transport.bind(sink)

        await transport.send(commands.power_off(2))

        update = sink.call_args.args[0]
        assert dict(update.power) == {2: PowerState.OFF}

    @pytest.mark.asyncio
    async def test_rejection_not_applied(self) -> None:
        transport = HttpTransport(HttpConfig(host="h"), session=_session(body={"Command": "Unknown"}))
        sink = MagicMock()
        transport.bind(sink)

        reply = await transport.send(commands.get_scheme())

        assert reply.body == {"Command": "Unknown"}
        sink.assert_not_called()


class TestFailures:
    @pytest.mark.asyncio
    async def test_unauthorized(self) -> None:
        transport = HttpTransport(HttpConfig(host="h"), session=_session(status=401))
        err = await expect_async_exception(transport.send(commands.power_on()), TasmotaConnectionError)
        assert "credentials" in err.reason

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        transport = HttpTransport(HttpConfig(host="h"), session=_session(status=500))
        err = await expect_async_exception(transport.send(commands.power_on()), TasmotaConnectionError)
        assert "500" in err.reason

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        session = _session()
        session.get.side_effect = TimeoutError()
        transport = HttpTransport(HttpConfig(host="h", timeout=3.0), session=session)

        err = await expect_async_exception(transport.send(commands.power_on()), CommandTimeoutError)

        assert err.timeout_seconds == 3.0
        assert err.device == "h"

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        session = _session()
        session.get.side_effect = aiohttp.ClientConnectionError("refused")
        transport = HttpTransport(HttpConfig(host="h"), session=session)
        _ = await expect_async_exception(transport.send(commands.power_on()), TasmotaConnectionError)

    @pytest.mark.asyncio
    async def test_non_object_body(self) -> None:
        transport = HttpTransport(HttpConfig(host="h"), session=_session(body="<html>login</html>"))
        err = await expect_async_exception(transport.send(commands.power_on()), ProtocolError)
        assert err.payload == "<html>login</html>"


class TestSessionOwnership:
    @pytest.mark.asyncio
    async def test_injected_session_left_open(self) -> None:
        session = _session()
        transport = HttpTransport(HttpConfig(host="h"), session=session)
        await transport.close()
        session.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_owned_session_created_and_closed(self) -> None:
        with patch("tasmota_control.transport.http.aiohttp.ClientSession") as mock_session_class:
            owned = _session()
            mock_session_class.return_value = owned
            transport = HttpTransport(HttpConfig(host="h"))

            await transport.open()
            await transport.close()

            mock_session_class.assert_called_once()
            owned.close.assert_awaited_once()
