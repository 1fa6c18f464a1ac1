"""Registry of state-change listeners for one device."""

from __future__ import annotations

import itertools
from collections.abc import Callable

from tasmota_control.logging_abstraction import get_logger
from tasmota_control.state.changes import StateChange

logger = get_logger(__name__)

type Listener = Callable[[StateChange], None]


class ListenerRegistry:
    """Typed listener table; delivery is a plain synchronous call.

    Listeners run on the task that processed the inbound message, so they
    must not block. Longer work belongs in a task the listener spawns.
    """

    lp: str = "listeners:"

    def __init__(self, device_id: str) -> None:
        self.device_id: str = device_id
        self._ids: itertools.count[int] = itertools.count(1)
        self._listeners: dict[int, tuple[type[StateChange], Listener]] = {}

    def subscribe(self, listener: Listener, change_type: type[StateChange] = StateChange) -> int:
        """Register ``listener`` for ``change_type`` (every change by default).

        Returns:
            Subscription id for unsubscribe()

        """
        subscription_id = next(self._ids)
        self._listeners[subscription_id] = (change_type, listener)
        return subscription_id

    def unsubscribe(self, subscription_id: int) -> bool:
        return self._listeners.pop(subscription_id, None) is not None

    def dispatch(self, change: StateChange) -> None:
        lp = f"{self.lp}dispatch:"
        for subscription_id, (change_type, listener) in list(self._listeners.items()):
            if not isinstance(change, change_type):
                continue
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "%s listener %s raised on %s",
                    lp,
                    subscription_id,
                    type(change).__name__,
                    extra={"device": self.device_id},
                )

    def __len__(self) -> int:
        return len(self._listeners)
