"""Bus abstraction — what a Bus Session needs from a service-manager connection.

A ``ManagerConnection`` owns one connection to one bus scope and exposes the
service-manager operations the session protocol relies on:

- ``subscribe_manager()``  — enable manager signals, then match ``UnitRemoved``
                             and ``UnitNew`` (in that order)
- ``list_units()``         — names of all currently loaded units
- ``subscribe_unit()``     — match ``PropertiesChanged`` for one unit
- ``get_unit_state()``     — current ``ActiveState`` plus timestamps
- ``next_signal()``        — wait for the next inbound signal

Signals are delivered through an ``asyncio.Queue``.  Bus bindings that
dispatch callbacks on a foreign thread hand them over with
``_deliver_threadsafe``; a lost connection is delivered as a sentinel that
makes ``next_signal()`` raise ``BusDisconnectedError``.

A ``NotificationSender`` delivers ``Notify`` calls to notifiers.  It is kept
separate from ``ManagerConnection`` because a notifier may live on a different
bus scope than the unit that triggered it.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Union

from killjoy.events import BusScope, Notification, UnitStateReport
from killjoy.exceptions import BusDisconnectedError
from killjoy.units import ActiveState

# ---------------------------------------------------------------------------
# Signal types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawUnitState:
    """Unit state exactly as the bus reported it; ``active_state`` is unparsed."""

    unit_name: str
    active_state: str
    monotonic_timestamp: int | None = None
    realtime_timestamp: int | None = None

    def to_report(self) -> UnitStateReport:
        """Parse into a ``UnitStateReport``.  Raises ``UnknownActiveStateError``."""
        return UnitStateReport(
            unit_name=self.unit_name,
            active_state=ActiveState.parse(self.active_state),
            monotonic_timestamp=self.monotonic_timestamp,
            realtime_timestamp=self.realtime_timestamp,
        )


@dataclass(frozen=True)
class UnitNew:
    unit_name: str


@dataclass(frozen=True)
class UnitRemoved:
    unit_name: str


@dataclass(frozen=True)
class UnitStateChanged:
    state: RawUnitState


Signal = Union[UnitNew, UnitRemoved, UnitStateChanged]

_DISCONNECTED = object()


# ---------------------------------------------------------------------------
# ManagerConnection
# ---------------------------------------------------------------------------


class ManagerConnection(ABC):
    """One connection to the service manager on one bus scope."""

    def __init__(self, bus_scope: BusScope) -> None:
        self.bus_scope = bus_scope
        self._signals: asyncio.Queue[Any] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None

    # -- lifecycle ----------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection.  Raises ``BusConnectionError``."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection.  Must not raise."""

    # -- service-manager operations ------------------------------------------

    @abstractmethod
    async def subscribe_manager(self) -> None:
        """Enable manager signals and match UnitRemoved, then UnitNew."""

    @abstractmethod
    async def list_units(self) -> list[str]:
        """Return the names of all currently loaded units."""

    @abstractmethod
    async def subscribe_unit(self, unit_name: str) -> Any:
        """Match PropertiesChanged for *unit_name*; return a subscription handle."""

    @abstractmethod
    async def unsubscribe_unit(self, handle: Any) -> None:
        """Release a handle returned by ``subscribe_unit``."""

    @abstractmethod
    async def get_unit_state(self, unit_name: str) -> RawUnitState:
        """Fetch the current state of *unit_name*.  Raises ``BusCallError``."""

    # -- signal stream -------------------------------------------------------

    async def next_signal(self) -> Signal:
        """Wait for the next signal.  Raises ``BusDisconnectedError`` on connection loss."""
        item = await self._signals.get()
        if item is _DISCONNECTED:
            raise BusDisconnectedError(self.bus_scope.value)
        return item

    def _bind_loop(self) -> None:
        """Remember the running loop so foreign threads can deliver signals."""
        self._loop = asyncio.get_running_loop()

    def _deliver(self, signal: Signal) -> None:
        self._signals.put_nowait(signal)

    def _deliver_disconnect(self) -> None:
        self._signals.put_nowait(_DISCONNECTED)

    def _deliver_threadsafe(self, signal: Signal) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._deliver, signal)

    def _deliver_disconnect_threadsafe(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._deliver_disconnect)


ConnectionFactory = Callable[[BusScope], ManagerConnection]


# ---------------------------------------------------------------------------
# NotificationSender
# ---------------------------------------------------------------------------


class NotificationSender(ABC):
    """Delivers ``Notify`` calls to notifiers on any bus scope."""

    @abstractmethod
    async def send(
        self,
        bus_scope: BusScope,
        bus_name: str,
        object_path: str,
        notification: Notification,
        timeout: float,
    ) -> None:
        """Send one notification and wait for the reply.

        Raises ``NotifierTimeoutError`` or ``NotifierDeliveryError``.
        """

    async def close(self) -> None:
        """Release any connections held by the sender."""
