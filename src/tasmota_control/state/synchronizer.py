"""Authoritative per-device state with minimal-diff change notification."""

from __future__ import annotations

from dataclasses import replace
from types import MappingProxyType

from tasmota_control.logging_abstraction import get_logger
from tasmota_control.metrics import registry
from tasmota_control.state.changes import (
    ColorChanged,
    ColorTemperatureChanged,
    ConnectionChanged,
    DimmerChanged,
    EnergyChanged,
    FadeChanged,
    PowerChanged,
    SchemeChanged,
    StateChange,
    SystemChanged,
)
from tasmota_control.state.listeners import ListenerRegistry
from tasmota_control.state.models import DeviceState, PartialStateUpdate
from tasmota_control.values import HsbColor

logger = get_logger(__name__)


class StateSynchronizer:
    """Owns one device's DeviceState.

    Replies and telemetry from either transport go through ``apply``. Each
    call replaces the snapshot at most once, so readers never see a partially
    applied update, and then notifies listeners in detection order.
    """

    lp: str = "state:"

    def __init__(self, device_id: str, initial: DeviceState | None = None) -> None:
        self.device_id: str = device_id
        self._state: DeviceState = initial or DeviceState()
        self.listeners: ListenerRegistry = ListenerRegistry(device_id)

    @property
    def state(self) -> DeviceState:
        return self._state

    def apply(self, update: PartialStateUpdate) -> list[StateChange]:
        """Merge the fields present in ``update`` and emit one change per differing field.

        Returns:
            The emitted changes, in the order listeners received them

        """
        lp = f"{self.lp}apply:"
        current = self._state
        changes: list[StateChange] = []
        replacements: dict[str, object] = {}

        if update.power:
            merged = dict(current.power)
            for index in sorted(update.power):
                new = update.power[index]
                old = current.power.get(index)
                if new != old:
                    merged[index] = new
                    changes.append(PowerChanged(index=index, state=new, previous=old))
            if merged != dict(current.power):
                replacements["power"] = MappingProxyType(merged)

        if update.dimmer is not None and update.dimmer != current.dimmer:
            replacements["dimmer"] = update.dimmer
            changes.append(DimmerChanged(value=update.dimmer, previous=current.dimmer))

        if update.color is not None and update.color != current.color:
            replacements["color"] = update.color
            if isinstance(update.color, HsbColor):
                changes.append(ColorChanged(color=update.color, previous=current.color))
            else:
                changes.append(ColorTemperatureChanged(value=update.color, previous=current.color))

        if update.scheme is not None and update.scheme != current.scheme:
            replacements["scheme"] = update.scheme
            changes.append(SchemeChanged(scheme=update.scheme, previous=current.scheme))

        fade_changed = False
        if update.fade_enabled is not None and update.fade_enabled != current.fade_enabled:
            replacements["fade_enabled"] = update.fade_enabled
            fade_changed = True
        if update.fade_speed is not None and update.fade_speed != current.fade_speed:
            replacements["fade_speed"] = update.fade_speed
            fade_changed = True
        if fade_changed:
            changes.append(
                FadeChanged(
                    enabled=replacements.get("fade_enabled", current.fade_enabled),  # type: ignore[arg-type]
                    speed=replacements.get("fade_speed", current.fade_speed),  # type: ignore[arg-type]
                ),
            )

        if update.energy is not None and update.energy != current.energy:
            replacements["energy"] = update.energy
            changes.append(EnergyChanged(reading=update.energy, previous=current.energy))

        if update.system is not None:
            system = current.system.merge(update.system) if current.system is not None else update.system
            if system != current.system:
                replacements["system"] = system
                changes.append(SystemChanged(info=system))

        if update.online is not None and update.online != current.online:
            replacements["online"] = update.online
            changes.append(ConnectionChanged(online=update.online))

        if not replacements:
            return []

        self._state = replace(current, **replacements)  # type: ignore[arg-type]
        logger.debug(
            "%s %d change(s): %s",
            lp,
            len(changes),
            ", ".join(type(c).__name__ for c in changes),
            extra={"device": self.device_id},
        )
        for change in changes:
            registry.record_state_change(change.category)
            self.listeners.dispatch(change)
        return changes
