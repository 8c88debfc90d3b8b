"""Shared event types — bus scopes, unit identities, transitions, notifications.

Key classes
-----------
BusScope          — which bus instance a unit or notifier lives on
UnitIdentity      — ``(bus_scope, unit_name)``, stable for a unit's lifetime
UnitStateReport   — a state observation from the bus (discovery or signal)
TransitionEvent   — ephemeral record of one observed state change
Notification      — the message body sent to a notifier

All of these are frozen dataclasses: they are handed across task boundaries
and must never be mutated after construction.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from killjoy.units import ActiveState


class BusScope(str, Enum):
    """The bus instances killjoy can connect to."""

    SESSION = "session"
    SYSTEM = "system"


@dataclass(frozen=True)
class UnitIdentity:
    bus_scope: BusScope
    unit_name: str

    def __str__(self) -> str:
        return f"{self.bus_scope.value}:{self.unit_name}"


@dataclass(frozen=True)
class UnitStateReport:
    """A unit state as reported by the service manager.

    ``monotonic_timestamp`` orders reports for the same unit (µs since boot);
    ``realtime_timestamp`` is forwarded to notifiers (µs since the epoch).
    Either may be None when the bus did not supply it.
    """

    unit_name: str
    active_state: ActiveState
    monotonic_timestamp: int | None = None
    realtime_timestamp: int | None = None


@dataclass(frozen=True)
class TransitionEvent:
    """One observed change of a unit's active state.

    Produced by a Bus Session, consumed once by the Dispatch Engine.
    ``timestamp`` is in microseconds since the epoch.
    """

    identity: UnitIdentity
    previous_state: ActiveState
    new_state: ActiveState
    timestamp: int = field(default_factory=lambda: int(time.time() * 1_000_000))


@dataclass(frozen=True)
class Notification:
    """Body of a ``Notify`` call.  Signature on the wire: ``tsass``.

    ``active_states`` is ordered newest first: ``[new_state, previous_state]``.
    """

    timestamp: int
    unit_name: str
    active_states: tuple[str, ...]
    bus_scope: str

    SIGNATURE = "tsass"

    @classmethod
    def from_event(cls, event: TransitionEvent) -> "Notification":
        return cls(
            timestamp=event.timestamp,
            unit_name=event.identity.unit_name,
            active_states=(event.new_state.value, event.previous_state.value),
            bus_scope=event.identity.bus_scope.value,
        )

    def as_args(self) -> tuple[Any, ...]:
        """Return the positional arguments of the ``Notify`` call."""
        return (self.timestamp, self.unit_name, list(self.active_states), self.bus_scope)
