"""Bus Session — per-bus-scope monitoring of unit active states.

A ``BusSession`` owns one ``ManagerConnection`` and one ``UnitRegistry`` and
turns bus signals into ``TransitionEvent`` objects, exposed as an async
generator::

    session = BusSession(BusScope.SYSTEM, settings, connection_factory)
    async for event in session.transitions():
        ...

Startup order matters.  Manager signals are subscribed before units are
listed, and each unit's ``PropertiesChanged`` match is installed before its
state is fetched; together these guarantee that no state change falls into a
gap between discovery and subscription.  Discovery itself never emits events.

When the connection drops the session snapshots the registry, reconnects with
exponential backoff and repeats discovery.  Units whose state differs from the
snapshot produce exactly one event each.  If reconnection keeps failing, or the
very first connection attempt fails, ``SessionFailedError`` is raised.

Every subscription and the connection itself are released when the generator
exits, whether by failure, cancellation, or ``aclose()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from killjoy.bus.base import (
    ConnectionFactory,
    ManagerConnection,
    Signal,
    UnitNew,
    UnitRemoved,
    UnitStateChanged,
)
from killjoy.events import BusScope, TransitionEvent
from killjoy.exceptions import (
    BusCallError,
    BusDisconnectedError,
    BusError,
    SessionFailedError,
    UnknownActiveStateError,
)
from killjoy.logging import get_logger
from killjoy.registry import UnitRegistry
from killjoy.settings import Settings
from killjoy.units import ActiveState

log = get_logger(__name__)


class BusSession:
    """Monitors the units of one bus scope on behalf of a ``Settings`` object.

    Args:
        bus_scope:                   Bus instance to connect to.
        settings:                    Validated settings; only rules for
                                     *bus_scope* are consulted.
        connection_factory:          Builds a fresh ``ManagerConnection`` for
                                     every (re)connection attempt.
        reconnect_attempts:          Consecutive failed reconnects tolerated
                                     before the session gives up.
        reconnect_backoff:           Delay before the first reconnect; doubled
                                     on every further attempt.
        reconnect_backoff_max:       Upper bound for the delay.
    """

    def __init__(
        self,
        bus_scope: BusScope,
        settings: Settings,
        connection_factory: ConnectionFactory,
        *,
        reconnect_attempts: int = 5,
        reconnect_backoff: float = 1.0,
        reconnect_backoff_max: float = 30.0,
    ) -> None:
        self.bus_scope = bus_scope
        self._settings = settings
        self._factory = connection_factory
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_backoff = reconnect_backoff
        self._reconnect_backoff_max = reconnect_backoff_max
        self.registry = UnitRegistry(bus_scope)
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    async def transitions(self) -> AsyncIterator[TransitionEvent]:
        """Yield a ``TransitionEvent`` for every observed state change.

        Raises:
            SessionFailedError: The session cannot (re)establish its connection.
        """
        snapshot: dict[str, ActiveState] | None = None
        attempt = 0

        while True:
            connection = self._factory(self.bus_scope)
            try:
                try:
                    await self._start(connection)
                except BusError as exc:
                    if snapshot is None:
                        raise SessionFailedError(self.bus_scope.value, str(exc)) from exc
                    attempt += 1
                    if attempt > self._reconnect_attempts:
                        raise SessionFailedError(
                            self.bus_scope.value, str(exc), attempts=attempt - 1
                        ) from exc
                    delay = self._backoff_delay(attempt)
                    log.warning(
                        "session_reconnect_failed",
                        attempt=attempt,
                        retry_in=delay,
                        error=str(exc),
                    )
                    await asyncio.sleep(delay)
                    continue

                attempt = 0
                if snapshot is not None:
                    for event in self._resync(snapshot):
                        yield event
                    log.info("session_resynced", units=len(self.registry))

                try:
                    while True:
                        signal = await connection.next_signal()
                        event = await self._handle_signal(connection, signal)
                        if event is not None:
                            yield event
                except BusDisconnectedError:
                    snapshot = self.registry.states()
                    attempt = 1
                    if self._reconnect_attempts < 1:
                        raise SessionFailedError(
                            self.bus_scope.value, "connection lost", attempts=0
                        ) from None
                    delay = self._backoff_delay(attempt)
                    log.warning("session_disconnected", units=len(snapshot), retry_in=delay)
                    await asyncio.sleep(delay)
            finally:
                await self._teardown(connection)

    def _backoff_delay(self, attempt: int) -> float:
        return min(self._reconnect_backoff * 2 ** (attempt - 1), self._reconnect_backoff_max)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def _start(self, connection: ManagerConnection) -> None:
        await connection.connect()
        self._connected = True
        await connection.subscribe_manager()
        unit_names = await connection.list_units()
        for unit_name in unit_names:
            if self._settings.watches(self.bus_scope, unit_name):
                await self._track(connection, unit_name)
        log.info("session_started", units_listed=len(unit_names), units_tracked=len(self.registry))

    async def _track(self, connection: ManagerConnection, unit_name: str) -> None:
        """Subscribe to *unit_name*, fetch its state and insert it into the registry.

        Per-unit call failures (typically a unit unloaded between discovery and
        subscription) are logged and the unit is skipped.  A unit in a state
        outside ``ActiveState`` stays subscribed as a pending entry and is
        settled by its next recognised state change.
        """
        try:
            handle = await connection.subscribe_unit(unit_name)
        except BusCallError as exc:
            log.warning("unit_subscribe_failed", unit=unit_name, error=exc.reason)
            return
        try:
            report = (await connection.get_unit_state(unit_name)).to_report()
        except UnknownActiveStateError as exc:
            self.registry.insert_pending(unit_name, subscription=handle)
            log.warning("unit_state_unrecognized", unit=unit_name, active_state=exc.value)
            return
        except BusCallError as exc:
            log.warning("unit_state_unavailable", unit=unit_name, error=exc.message)
            await self._release(connection, handle)
            return
        self.registry.insert(report, subscription=handle)
        log.debug("unit_tracked", unit=unit_name, active_state=report.active_state.value)

    # ------------------------------------------------------------------
    # Steady state
    # ------------------------------------------------------------------

    async def _handle_signal(
        self, connection: ManagerConnection, signal: Signal
    ) -> TransitionEvent | None:
        if isinstance(signal, UnitStateChanged):
            raw = signal.state
            if raw.unit_name not in self.registry:
                return None
            try:
                report = raw.to_report()
            except UnknownActiveStateError as exc:
                log.warning("unit_state_unrecognized", unit=raw.unit_name, active_state=exc.value)
                return None
            event = self.registry.apply(report)
            if event is not None:
                log.debug(
                    "unit_transition",
                    unit=raw.unit_name,
                    previous_state=event.previous_state.value,
                    new_state=event.new_state.value,
                )
            return event

        if isinstance(signal, UnitNew):
            if signal.unit_name not in self.registry and self._settings.watches(
                self.bus_scope, signal.unit_name
            ):
                await self._track(connection, signal.unit_name)
            return None

        if isinstance(signal, UnitRemoved):
            entry = self.registry.evict(signal.unit_name)
            if entry is not None:
                await self._release(connection, entry.subscription)
                log.debug("unit_untracked", unit=signal.unit_name)
            return None

        log.debug("signal_ignored", signal=type(signal).__name__)
        return None

    def _resync(self, snapshot: dict[str, ActiveState]) -> list[TransitionEvent]:
        """Compare freshly discovered states with the pre-disconnect *snapshot*."""
        events = []
        for entry in self.registry:
            previous = snapshot.get(entry.identity.unit_name)
            if entry.active_state is None or previous is None:
                continue
            if previous != entry.active_state:
                events.append(
                    TransitionEvent(
                        identity=entry.identity,
                        previous_state=previous,
                        new_state=entry.active_state,
                    )
                )
        return events

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _release(self, connection: ManagerConnection, handle: object) -> None:
        try:
            await connection.unsubscribe_unit(handle)
        except BusError as exc:
            log.debug("unit_unsubscribe_failed", error=exc.message)

    async def _teardown(self, connection: ManagerConnection) -> None:
        for entry in self.registry.drain():
            await self._release(connection, entry.subscription)
        self._connected = False
        await connection.close()
