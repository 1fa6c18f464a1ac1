"""Shared fixtures for unit tests.

Provides a fake broker, fast reconnect settings and a mock transport.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tasmota_control.capabilities import Capabilities
from tasmota_control.config import BrokerConfig
from tasmota_control.device import Device
from tasmota_control.transport.retry_policy import ReconnectPolicy
from tasmota_control.transport.session import BrokerSession
from tasmota_control.transport.types import Reply
from tests.helpers.fake_broker import FakeBroker


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def broker_config() -> BrokerConfig:
    return BrokerConfig(
        host="broker.test",
        port=1883,
        client_id="tasmota-control-test",
        command_timeout=0.5,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
    )


@pytest.fixture
def make_session(broker: FakeBroker, broker_config: BrokerConfig) -> Callable[..., BrokerSession]:
    """Build (unstarted) sessions wired to the fake broker."""

    def _make(**kwargs: Any) -> BrokerSession:
        kwargs.setdefault("client_factory", broker.client_factory)
        kwargs.setdefault("reconnect_policy", ReconnectPolicy(0.01, 0.05, jitter_factor=0.0))
        return BrokerSession(broker_config, **kwargs)

    return _make


@pytest.fixture
def mock_transport() -> MagicMock:
    """Transport double that answers every command with an empty RESULT body."""
    transport = MagicMock()
    transport.name = "mock"
    transport.device_id = "mock-device"
    transport.open = AsyncMock()
    transport.close = AsyncMock()
    transport.send = AsyncMock(side_effect=lambda command, timeout=None: Reply("mock-device", command.name, {}))
    return transport


@pytest.fixture
def make_device(mock_transport: MagicMock) -> Callable[..., Device]:
    def _make(capabilities: Capabilities | None = None) -> Device:
        return Device(mock_transport, capabilities or Capabilities.rgbcct_light())

    return _make
