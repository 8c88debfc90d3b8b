"""Unit vocabulary — active states, unit types, timestamp properties.

systemd exposes a unit's ``ActiveState`` property as a string.  ``ActiveState``
gives the five states killjoy understands a typed representation; anything
else the bus reports is rejected with ``UnknownActiveStateError``.

For conceptual information see the "CONCEPTS" section of systemd(1) and the
``ActiveState`` property in org.freedesktop.systemd1(5).
"""

from __future__ import annotations

from enum import Enum

from killjoy.exceptions import UnknownActiveStateError

# The eleven unit type suffixes systemd knows how to manage.
UNIT_TYPES: tuple[str, ...] = (
    ".automount",
    ".device",
    ".mount",
    ".path",
    ".scope",
    ".service",
    ".slice",
    ".socket",
    ".swap",
    ".target",
    ".timer",
)


class ActiveState(str, Enum):
    """The possible values of a unit's ``ActiveState`` property."""

    ACTIVATING = "activating"
    ACTIVE = "active"
    DEACTIVATING = "deactivating"
    FAILED = "failed"
    INACTIVE = "inactive"

    @classmethod
    def parse(cls, value: str) -> "ActiveState":
        """Return the member for *value*, or raise ``UnknownActiveStateError``."""
        try:
            return cls(value)
        except ValueError:
            raise UnknownActiveStateError(str(value)) from None

    @property
    def monotonic_timestamp_key(self) -> str:
        """Unit property holding the monotonic time this state was last entered."""
        return _MONOTONIC_TIMESTAMP_KEYS[self]

    @property
    def realtime_timestamp_key(self) -> str:
        """Unit property holding the wall-clock time this state was last entered."""
        return _REALTIME_TIMESTAMP_KEYS[self]


_MONOTONIC_TIMESTAMP_KEYS: dict[ActiveState, str] = {
    ActiveState.ACTIVATING: "InactiveExitTimestampMonotonic",
    ActiveState.ACTIVE: "ActiveEnterTimestampMonotonic",
    ActiveState.DEACTIVATING: "ActiveExitTimestampMonotonic",
    ActiveState.FAILED: "InactiveEnterTimestampMonotonic",
    ActiveState.INACTIVE: "InactiveEnterTimestampMonotonic",
}

_REALTIME_TIMESTAMP_KEYS: dict[ActiveState, str] = {
    ActiveState.ACTIVATING: "InactiveExitTimestamp",
    ActiveState.ACTIVE: "ActiveEnterTimestamp",
    ActiveState.DEACTIVATING: "ActiveExitTimestamp",
    ActiveState.FAILED: "InactiveEnterTimestamp",
    ActiveState.INACTIVE: "InactiveEnterTimestamp",
}


def unit_type_of(unit_name: str) -> str | None:
    """Return the type suffix of *unit_name* (e.g. ``".timer"``), or None."""
    for suffix in UNIT_TYPES:
        if unit_name.endswith(suffix):
            return suffix
    return None
