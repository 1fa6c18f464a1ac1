"""Request/response correlation over MQTT.

Tasmota answers a command by publishing on ``stat/<topic>/RESULT`` (or
``STATUS<n>``), the same topics it uses for unsolicited updates. The
correlator keeps a table of commands awaiting a reply and hands each
classified reply to the oldest pending command it answers.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from tasmota_control.commands import RESULT_TOPIC, Command
from tasmota_control.const import TASMOTA_COMMAND_TIMEOUT
from tasmota_control.correlation import get_correlation_id
from tasmota_control.exceptions import CommandTimeoutError, ProtocolError
from tasmota_control.logging_abstraction import get_logger
from tasmota_control.metrics import registry
from tasmota_control.transport.classifier import ClassifiedMessage, MessageKind
from tasmota_control.transport.types import CorrelationKey, PendingCorrelation, Reply

logger = get_logger(__name__)

_REJECTIONS = ("Unknown", "Error")


def is_rejection(body: Mapping[str, Any]) -> bool:
    """True for Tasmota's ``{"Command": "Unknown"}`` / ``{"Command": "Error"}`` replies."""
    return body.get("Command") in _REJECTIONS


class Correlator:
    """Pending-command table keyed by (device topic, command kind, sequence).

    All methods are synchronous except ``send``; table mutations never span
    an await.
    """

    lp: str = "correlator:"

    def __init__(self, default_timeout: float = TASMOTA_COMMAND_TIMEOUT) -> None:
        self.default_timeout: float = default_timeout
        self._pending: dict[CorrelationKey, PendingCorrelation] = {}
        self._sequence: itertools.count[int] = itertools.count(1)

    def __len__(self) -> int:
        return len(self._pending)

    def register(self, device: str, command: Command, timeout: float | None = None) -> PendingCorrelation:
        """Add a pending entry whose deadline starts now."""
        loop = asyncio.get_running_loop()
        now = loop.time()
        pending = PendingCorrelation(
            device=device,
            command=command,
            sequence=next(self._sequence),
            created_at=now,
            deadline=now + (timeout if timeout is not None else self.default_timeout),
            future=loop.create_future(),
            correlation_id=get_correlation_id(),
        )
        self._pending[pending.key] = pending
        registry.record_pending_correlations(len(self._pending))
        return pending

    def discard(self, pending: PendingCorrelation) -> None:
        self._pending.pop(pending.key, None)
        registry.record_pending_correlations(len(self._pending))

    def offer(self, message: ClassifiedMessage) -> PendingCorrelation | None:
        """Resolve the pending command that ``message`` answers.

        Light commands on one device share reply keys, so an entry whose
        requested value is echoed back wins over older entries; otherwise the
        oldest entry that accepts the reply takes it. Only REPLY messages are
        considered. Returns the entry the message was given to, or None if
        nothing was waiting for it.
        """
        lp = f"{self.lp}offer:"
        if message.kind is not MessageKind.REPLY or message.body is None:
            return None

        body = message.body
        rejected = message.suffix == RESULT_TOPIC and is_rejection(body)
        pending = self._select(message, body, rejected)
        if pending is None:
            return None

        command = pending.command
        if rejected:
            pending.future.set_exception(
                ProtocolError(f"device rejected '{command}': {body.get('Command')}", message.payload),
            )
        elif command.collect:
            pending.collected[message.suffix] = body
            if command.required_topics <= pending.collected.keys():
                pending.future.set_result(self._merge(pending))
        else:
            pending.future.set_result(
                Reply(device=pending.device, command=command.name, body=body, topics=(message.suffix,)),
            )
        logger.debug(
            "%s %s answered by %s",
            lp,
            command,
            message.topic,
            extra={
                "device": pending.device,
                "transport": "mqtt",
                "command": command.name,
                "sequence": pending.sequence,
                "correlation_id": pending.correlation_id,
            },
        )
        return pending

    def _select(self, message: ClassifiedMessage, body: Mapping[str, Any], rejected: bool) -> PendingCorrelation | None:
        # dicts keep insertion order, so candidates are oldest first
        candidates = [p for p in self._pending.values() if p.device == message.device_topic and not p.resolved]
        if rejected:
            return next((p for p in candidates if RESULT_TOPIC in p.command.reply_topics), None)

        keys = frozenset(body)
        accepting = [p for p in candidates if self._accepts(p, message.suffix, keys)]
        echoed = next((p for p in accepting if p.command.echoed_by(body)), None)
        if echoed is not None:
            return echoed
        return accepting[0] if accepting else None

    @staticmethod
    def _accepts(pending: PendingCorrelation, suffix: str, keys: frozenset[str]) -> bool:
        command = pending.command
        if not command.matches_reply(suffix, keys):
            return False
        return not (command.collect and suffix in pending.collected)

    @staticmethod
    def _merge(pending: PendingCorrelation, partial: bool = False) -> Reply:
        body: dict[str, Any] = {}
        for section in pending.collected.values():
            body.update(section)
        return Reply(
            device=pending.device,
            command=pending.command.name,
            body=body,
            topics=tuple(pending.collected),
            partial=partial,
        )

    async def send(
        self,
        device: str,
        command: Command,
        publish: Callable[[], Awaitable[None]],
        timeout: float | None = None,
    ) -> Reply:
        """Register, publish and wait for the reply to ``command``.

        The deadline covers the publish too, so a command queued behind a
        reconnect still times out on schedule.

        Raises:
            CommandTimeoutError: No (or, for collected replies, no partial) reply in time
            ProtocolError: The device rejected the command
            TasmotaConnectionError: The session was closed while publishing

        """
        lp = f"{self.lp}send:"
        pending = self.register(device, command, timeout)
        try:
            async with asyncio.timeout_at(pending.deadline):
                await publish()
                return await pending.future
        except TimeoutError:
            if pending.collected:
                logger.info(
                    "%s %s collected %d of %d replies before the deadline",
                    lp,
                    command,
                    len(pending.collected),
                    len(command.required_topics),
                    extra={"device": device, "transport": "mqtt", "sequence": pending.sequence},
                )
                return self._merge(pending, partial=True)
            waited = pending.deadline - pending.created_at
            registry.record_reply_timeout(device)
            logger.warning(
                "%s no reply to %s within %.1fs",
                lp,
                command,
                waited,
                extra={"device": device, "transport": "mqtt", "sequence": pending.sequence},
            )
            raise CommandTimeoutError(command.name, waited, device) from None
        finally:
            self.discard(pending)
