"""HTTP and MQTT transports, the shared broker session and reply correlation."""

from tasmota_control.transport.classifier import ClassifiedMessage, MessageKind, classify_message
from tasmota_control.transport.correlator import Correlator
from tasmota_control.transport.http import HttpTransport
from tasmota_control.transport.mqtt import MqttTransport
from tasmota_control.transport.pool import BrokerPool, default_pool
from tasmota_control.transport.retry_policy import ReconnectPolicy
from tasmota_control.transport.session import BrokerSession, SessionState
from tasmota_control.transport.types import PendingCorrelation, Reply, Transport

__all__ = [
    "BrokerPool",
    "BrokerSession",
    "ClassifiedMessage",
    "Correlator",
    "HttpTransport",
    "MessageKind",
    "MqttTransport",
    "PendingCorrelation",
    "ReconnectPolicy",
    "Reply",
    "SessionState",
    "Transport",
    "classify_message",
    "default_pool",
]
