"""Unit Registry — per-session map of tracked units to their last observed state.

Each Bus Session owns exactly one registry and is its only writer, so no
locking is involved.  The unit set is open-ended: entries are inserted when a
unit is discovered (at startup or on ``UnitNew``) and evicted when the bus
reports ``UnitRemoved``.

State updates follow two rules:

1. A report whose monotonic timestamp is not newer than the entry's is stale
   (a discovery reply racing a ``PropertiesChanged`` signal) and is dropped.
   Reports lacking a timestamp skip this check.
2. A report whose state equals the entry's state is a no-op and is dropped.

Anything else updates the entry in place and yields exactly one
``TransitionEvent``.

An entry may be *pending*: tracked and subscribed, but with no known state
yet (the unit was in a state outside ``ActiveState`` when discovered).  The
first recognised report settles it without producing an event, since there
is no previous state to report.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from killjoy.events import BusScope, TransitionEvent, UnitIdentity, UnitStateReport
from killjoy.units import ActiveState


@dataclass
class UnitEntry:
    """Registry record for one tracked unit."""

    identity: UnitIdentity
    active_state: ActiveState | None
    timestamp: int | None = None
    subscription: Any = None
    """Opaque handle returned by the connection's ``subscribe_unit``."""

    def update(self, report: UnitStateReport) -> TransitionEvent | None:
        """Apply *report*; return a TransitionEvent if the state changed."""
        if (
            report.monotonic_timestamp is not None
            and self.timestamp is not None
            and report.monotonic_timestamp <= self.timestamp
        ):
            return None
        if report.monotonic_timestamp is not None:
            self.timestamp = report.monotonic_timestamp
        if self.active_state is None:
            self.active_state = report.active_state
            return None
        if report.active_state == self.active_state:
            return None

        previous = self.active_state
        self.active_state = report.active_state
        return TransitionEvent(
            identity=self.identity,
            previous_state=previous,
            new_state=report.active_state,
            timestamp=report.realtime_timestamp or int(time.time() * 1_000_000),
        )


class UnitRegistry:
    """Insert/evict collection of ``UnitEntry`` objects for one bus scope."""

    def __init__(self, bus_scope: BusScope) -> None:
        self._bus_scope = bus_scope
        self._entries: dict[str, UnitEntry] = {}

    @property
    def bus_scope(self) -> BusScope:
        return self._bus_scope

    def insert(self, report: UnitStateReport, subscription: Any = None) -> UnitEntry:
        """Create (or replace) the entry for ``report.unit_name``."""
        entry = UnitEntry(
            identity=UnitIdentity(self._bus_scope, report.unit_name),
            active_state=report.active_state,
            timestamp=report.monotonic_timestamp,
            subscription=subscription,
        )
        self._entries[report.unit_name] = entry
        return entry

    def insert_pending(self, unit_name: str, subscription: Any = None) -> UnitEntry:
        """Track *unit_name* before its state is known."""
        entry = UnitEntry(
            identity=UnitIdentity(self._bus_scope, unit_name),
            active_state=None,
            subscription=subscription,
        )
        self._entries[unit_name] = entry
        return entry

    def evict(self, unit_name: str) -> UnitEntry | None:
        """Remove and return the entry for *unit_name*, if tracked."""
        return self._entries.pop(unit_name, None)

    def apply(self, report: UnitStateReport) -> TransitionEvent | None:
        """Update a tracked unit.  Reports for untracked units are ignored."""
        entry = self._entries.get(report.unit_name)
        if entry is None:
            return None
        return entry.update(report)

    def get(self, unit_name: str) -> UnitEntry | None:
        return self._entries.get(unit_name)

    def states(self) -> dict[str, ActiveState]:
        """Snapshot of ``unit_name → active_state``; pending entries are left out."""
        return {
            name: entry.active_state
            for name, entry in self._entries.items()
            if entry.active_state is not None
        }

    def drain(self) -> list[UnitEntry]:
        """Remove and return every entry (used on teardown and resync)."""
        entries = list(self._entries.values())
        self._entries.clear()
        return entries

    def __contains__(self, unit_name: object) -> bool:
        return unit_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[UnitEntry]:
        return iter(list(self._entries.values()))
