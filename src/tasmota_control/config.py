"""Connection settings for the HTTP and MQTT transports and managed devices."""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tasmota_control.capabilities import Capabilities
from tasmota_control.const import (
    DEFAULT_HTTP_PORT,
    TASMOTA_COMMAND_TIMEOUT,
    TASMOTA_HTTP_TIMEOUT,
    TASMOTA_MQTT_HOST,
    TASMOTA_MQTT_KEEPALIVE,
    TASMOTA_MQTT_PASS,
    TASMOTA_MQTT_PORT,
    TASMOTA_MQTT_USER,
    TASMOTA_RECONNECT_BASE_DELAY,
    TASMOTA_RECONNECT_MAX_DELAY,
)


class BrokerConfig(BaseModel):
    """MQTT broker endpoint and session tuning.

    Defaults come from the TASMOTA_MQTT_* / TASMOTA_RECONNECT_* environment.
    Two configs with the same endpoint and credentials share one pooled session.
    """

    model_config = {"frozen": True}

    host: str = TASMOTA_MQTT_HOST
    port: int = Field(default=TASMOTA_MQTT_PORT, ge=1, le=65535)
    username: str | None = TASMOTA_MQTT_USER
    password: str | None = TASMOTA_MQTT_PASS
    client_id: str | None = None
    keepalive: int = Field(default=TASMOTA_MQTT_KEEPALIVE, ge=1)
    command_timeout: float = Field(default=TASMOTA_COMMAND_TIMEOUT, gt=0)
    reconnect_base_delay: float = Field(default=TASMOTA_RECONNECT_BASE_DELAY, gt=0)
    reconnect_max_delay: float = Field(default=TASMOTA_RECONNECT_MAX_DELAY, gt=0)

    @property
    def endpoint_key(self) -> tuple[str, int, str | None, str | None]:
        return (self.host, self.port, self.username, self.password)

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"


class HttpConfig(BaseModel):
    """One device reached over the Tasmota HTTP ``/cm`` endpoint."""

    model_config = {"frozen": True}

    host: str
    port: int = Field(default=DEFAULT_HTTP_PORT, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    timeout: float = Field(default=TASMOTA_HTTP_TIMEOUT, gt=0)

    @property
    def base_url(self) -> str:
        if self.port == DEFAULT_HTTP_PORT:
            return f"http://{self.host}"
        return f"http://{self.host}:{self.port}"


class DeviceConfig(BaseModel):
    """One device registered with a DeviceManager.

    Exactly one way of reaching the device is set: ``http`` for the ``/cm``
    endpoint, or ``topic`` (with an optional ``broker``) for MQTT.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    http: HttpConfig | None = None
    topic: str | None = None
    broker: BrokerConfig | None = None
    capabilities: Capabilities | None = None
    friendly_name: str | None = None
    connect_retries: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def one_transport(self) -> Self:
        if (self.http is None) == (self.topic is None):
            msg = "set either http or topic"
            raise ValueError(msg)
        if self.http is not None and self.broker is not None:
            msg = "broker only applies to MQTT devices"
            raise ValueError(msg)
        return self

    @classmethod
    def mqtt(cls, topic: str, broker: BrokerConfig | None = None, **kwargs: Any) -> Self:
        return cls(topic=topic, broker=broker, **kwargs)

    @classmethod
    def over_http(cls, host: str | HttpConfig, **kwargs: Any) -> Self:
        return cls(http=host if isinstance(host, HttpConfig) else HttpConfig(host=host), **kwargs)

    @property
    def transport(self) -> str:
        return "http" if self.http is not None else "mqtt"

    @property
    def display_name(self) -> str:
        if self.friendly_name:
            return self.friendly_name
        if self.http is not None:
            return self.http.host
        return str(self.topic)
