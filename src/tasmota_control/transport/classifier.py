"""Classification of inbound MQTT messages.

Rules, applied in order:

1. Topics that are not ``<prefix>/<device>/<suffix>`` are IGNORED.
2. ``tele/<device>/LWT`` is LAST_WILL.
3. ``stat/<device>/POWER[n]`` is TELEMETRY. Its plain-text payload
   ("ON"/"OFF") is never fed to the JSON decoder.
4. ``stat/<device>/RESULT`` and ``stat/<device>/STATUS[n]`` carrying a JSON
   object are REPLY.
5. Any other message carrying a JSON object is TELEMETRY.
6. Everything else is IGNORED.

Only REPLY messages may resolve a pending command. A reply-topic message
whose payload is not a JSON object (rule 4 fails) is not a reply.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tasmota_control.commands import RESULT_TOPIC
from tasmota_control.state.models import PartialStateUpdate
from tasmota_control.state.parsers import (
    decode_object,
    update_from_last_will,
    update_from_payload,
    update_from_power_text,
)

_STATUS_SUFFIX = re.compile(r"^STATUS\d*$")
_POWER_SUFFIX = re.compile(r"^POWER\d*$")


class MessageKind(Enum):
    REPLY = "reply"
    TELEMETRY = "telemetry"
    LAST_WILL = "last_will"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class ClassifiedMessage:
    kind: MessageKind
    topic: str
    prefix: str
    device_topic: str
    suffix: str
    payload: str
    body: dict[str, Any] | None = None


def is_reply_topic(prefix: str, suffix: str) -> bool:
    return prefix == "stat" and (suffix == RESULT_TOPIC or _STATUS_SUFFIX.match(suffix) is not None)


def classify_message(topic: str, payload: str | bytes) -> ClassifiedMessage:
    """Classify one inbound message; pure, no side effects."""
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes | bytearray) else str(payload)
    parts = topic.split("/")
    if len(parts) < 3 or not all(parts):
        return ClassifiedMessage(MessageKind.IGNORED, topic, "", "", "", text)

    prefix, suffix = parts[0], parts[-1]
    device_topic = "/".join(parts[1:-1])

    def classified(kind: MessageKind, body: dict[str, Any] | None = None) -> ClassifiedMessage:
        return ClassifiedMessage(kind, topic, prefix, device_topic, suffix, text, body)

    if prefix == "tele" and suffix == "LWT":
        return classified(MessageKind.LAST_WILL)

    if prefix == "stat" and _POWER_SUFFIX.match(suffix):
        return classified(MessageKind.TELEMETRY)

    body = decode_object(text)
    if body is not None:
        if is_reply_topic(prefix, suffix):
            return classified(MessageKind.REPLY, body)
        return classified(MessageKind.TELEMETRY, body)

    return classified(MessageKind.IGNORED)


def to_state_update(message: ClassifiedMessage) -> PartialStateUpdate | None:
    """State carried by a classified message, if any.

    Raises:
        ProtocolError: When the message content is malformed

    """
    if message.kind is MessageKind.LAST_WILL:
        return update_from_last_will(message.payload)
    if message.kind in (MessageKind.REPLY, MessageKind.TELEMETRY):
        if message.body is not None:
            return update_from_payload(message.body)
        return update_from_power_text(message.suffix, message.payload)
    return None
