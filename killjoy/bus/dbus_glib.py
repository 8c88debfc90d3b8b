"""dbus-python implementation of the bus abstraction.

dbus-python dispatches signals from a GLib main loop.  killjoy runs one such
loop in a daemon thread shared by every connection; signal callbacks are
handed over to the asyncio loop with ``call_soon_threadsafe``.  Blocking
method calls run in worker threads via ``asyncio.to_thread`` and carry an
explicit D-Bus reply timeout.

External dependencies
---------------------
``dbus-python`` and ``PyGObject`` (the ``dbus`` extra)::

    pip install 'killjoy[dbus]'

Both need the libdbus/GLib development headers to build.  They are imported
lazily so that settings validation works on hosts without them.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable

from killjoy.bus.base import (
    ManagerConnection,
    NotificationSender,
    RawUnitState,
    UnitNew,
    UnitRemoved,
    UnitStateChanged,
)
from killjoy.bus.names import (
    NOTIFIER_INTERFACE,
    NOTIFIER_MEMBER,
    PROPERTIES_INTERFACE,
    SYSTEMD_BUS_NAME,
    SYSTEMD_MANAGER_INTERFACE,
    SYSTEMD_PATH,
    SYSTEMD_UNIT_INTERFACE,
)
from killjoy.events import BusScope, Notification
from killjoy.exceptions import (
    BusCallError,
    BusConnectionError,
    NotifierDeliveryError,
    NotifierTimeoutError,
)
from killjoy.logging import get_logger
from killjoy.units import ActiveState

log = get_logger(__name__)

_TIMEOUT_ERRORS = frozenset(
    {"org.freedesktop.DBus.Error.NoReply", "org.freedesktop.DBus.Error.Timeout"}
)

_glib_lock = threading.Lock()
_glib_thread: threading.Thread | None = None


# ---------------------------------------------------------------------------
# GLib main loop
# ---------------------------------------------------------------------------


def _import_bindings(bus_scope: BusScope) -> Any:
    try:
        import dbus
        import dbus.mainloop.glib
    except ImportError:
        raise BusConnectionError(
            bus_scope.value,
            "dbus-python is not installed. Run: pip install 'killjoy[dbus]'",
        ) from None
    return dbus


def _ensure_main_loop(bus_scope: BusScope) -> Any:
    """Start the shared GLib main loop thread once; return the ``dbus`` module."""
    global _glib_thread
    dbus = _import_bindings(bus_scope)
    with _glib_lock:
        if _glib_thread is not None and _glib_thread.is_alive():
            return dbus
        try:
            from gi.repository import GLib
        except ImportError:
            raise BusConnectionError(
                bus_scope.value,
                "PyGObject is not installed. Run: pip install 'killjoy[dbus]'",
            ) from None
        dbus.mainloop.glib.threads_init()
        dbus.mainloop.glib.DBusGMainLoop(set_as_default=True)
        main_loop = GLib.MainLoop()
        _glib_thread = threading.Thread(target=main_loop.run, name="killjoy-glib", daemon=True)
        _glib_thread.start()
        log.debug("glib_main_loop_started")
    return dbus


def _open_private_bus(dbus: Any, bus_scope: BusScope) -> Any:
    if bus_scope is BusScope.SYSTEM:
        bus = dbus.SystemBus(private=True)
    else:
        bus = dbus.SessionBus(private=True)
    bus.set_exit_on_disconnect(False)
    return bus


def _timestamps(active_state: str, props: Any) -> tuple[int | None, int | None]:
    """Pick the monotonic and realtime timestamps for *active_state* out of *props*."""
    try:
        state = ActiveState(active_state)
    except ValueError:
        return None, None
    mono = props.get(state.monotonic_timestamp_key)
    real = props.get(state.realtime_timestamp_key)
    return (
        int(mono) if mono is not None else None,
        int(real) if real is not None else None,
    )


# ---------------------------------------------------------------------------
# DBusManagerConnection
# ---------------------------------------------------------------------------


class DBusManagerConnection(ManagerConnection):
    """Talks to ``org.freedesktop.systemd1`` over a private dbus-python connection."""

    def __init__(self, bus_scope: BusScope, call_timeout: float = 1.0) -> None:
        super().__init__(bus_scope)
        self._call_timeout = call_timeout
        self._dbus: Any = None
        self._bus: Any = None
        self._manager_matches: list[Any] = []
        self._closing = False

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        self._bind_loop()
        self._dbus = _ensure_main_loop(self.bus_scope)
        try:
            self._bus = await asyncio.to_thread(_open_private_bus, self._dbus, self.bus_scope)
        except self._dbus.exceptions.DBusException as exc:
            raise BusConnectionError(self.bus_scope.value, str(exc)) from exc
        self._bus.call_on_disconnection(self._on_disconnection)
        log.debug("bus_connected", unique_name=str(self._bus.get_unique_name()))

    async def close(self) -> None:
        if self._bus is None:
            return
        self._closing = True
        bus, matches = self._bus, self._manager_matches
        self._bus, self._manager_matches = None, []

        def _close() -> None:
            for match in matches:
                try:
                    match.remove()
                except Exception as exc:
                    log.debug("signal_match_remove_failed", error=str(exc))
            bus.close()

        try:
            await asyncio.to_thread(_close)
        except Exception as exc:
            log.warning("bus_close_failed", error=str(exc))

    def _on_disconnection(self, _connection: Any) -> None:
        if not self._closing:
            self._deliver_disconnect_threadsafe()

    # -- service-manager operations ------------------------------------------

    async def subscribe_manager(self) -> None:
        def _subscribe() -> None:
            self._manager().Subscribe(timeout=self._call_timeout)
            # UnitRemoved first: otherwise a UnitNew/UnitRemoved pair racing
            # the two match calls could leave a phantom unit behind.
            for member, signal_type in (("UnitRemoved", UnitRemoved), ("UnitNew", UnitNew)):
                match = self._bus.add_signal_receiver(
                    self._manager_handler(signal_type),
                    signal_name=member,
                    dbus_interface=SYSTEMD_MANAGER_INTERFACE,
                    bus_name=SYSTEMD_BUS_NAME,
                    path=SYSTEMD_PATH,
                )
                self._manager_matches.append(match)

        await self._call("org.freedesktop.systemd1.Manager.Subscribe", _subscribe)

    async def list_units(self) -> list[str]:
        def _list() -> list[str]:
            return [str(unit[0]) for unit in self._manager().ListUnits(timeout=self._call_timeout)]

        return await self._call("org.freedesktop.systemd1.Manager.ListUnits", _list)

    async def subscribe_unit(self, unit_name: str) -> Any:
        def _subscribe() -> Any:
            path = self._manager().GetUnit(unit_name, timeout=self._call_timeout)
            return self._bus.add_signal_receiver(
                self._properties_handler(unit_name),
                signal_name="PropertiesChanged",
                dbus_interface=PROPERTIES_INTERFACE,
                bus_name=SYSTEMD_BUS_NAME,
                path=path,
            )

        return await self._call(f"PropertiesChanged match for {unit_name}", _subscribe)

    async def unsubscribe_unit(self, handle: Any) -> None:
        if handle is None or self._bus is None:
            return
        await self._call("remove PropertiesChanged match", handle.remove)

    async def get_unit_state(self, unit_name: str) -> RawUnitState:
        def _get() -> RawUnitState:
            dbus = self._dbus
            path = self._manager().GetUnit(unit_name, timeout=self._call_timeout)
            unit = self._bus.get_object(SYSTEMD_BUS_NAME, path, introspect=False)
            props = dbus.Interface(unit, dbus_interface=PROPERTIES_INTERFACE).GetAll(
                SYSTEMD_UNIT_INTERFACE, timeout=self._call_timeout
            )
            active_state = str(props["ActiveState"])
            mono, real = _timestamps(active_state, props)
            return RawUnitState(unit_name, active_state, mono, real)

        return await self._call("org.freedesktop.DBus.Properties.GetAll", _get)

    # -- helpers ------------------------------------------------------------

    def _manager(self) -> Any:
        obj = self._bus.get_object(SYSTEMD_BUS_NAME, SYSTEMD_PATH, introspect=False)
        return self._dbus.Interface(obj, dbus_interface=SYSTEMD_MANAGER_INTERFACE)

    async def _call(self, call: str, fn: Callable[[], Any]) -> Any:
        if self._bus is None:
            raise BusCallError(call, "not connected")
        try:
            return await asyncio.to_thread(fn)
        except self._dbus.exceptions.DBusException as exc:
            raise BusCallError(call, str(exc), exc.get_dbus_name()) from exc

    def _manager_handler(self, signal_type: type) -> Callable[..., None]:
        def handler(unit_id: Any, _unit_path: Any) -> None:
            self._deliver_threadsafe(signal_type(str(unit_id)))

        return handler

    def _properties_handler(self, unit_name: str) -> Callable[..., None]:
        def handler(interface: Any, changed: Any, _invalidated: Any) -> None:
            if str(interface) != SYSTEMD_UNIT_INTERFACE or "ActiveState" not in changed:
                return
            active_state = str(changed["ActiveState"])
            mono, real = _timestamps(active_state, changed)
            self._deliver_threadsafe(
                UnitStateChanged(RawUnitState(unit_name, active_state, mono, real))
            )

        return handler


# ---------------------------------------------------------------------------
# DBusNotificationSender
# ---------------------------------------------------------------------------


class DBusNotificationSender(NotificationSender):
    """Sends ``Notify`` calls over one private connection per bus scope.

    Connections are opened on first use and reopened if they drop.
    """

    def __init__(self) -> None:
        self._buses: dict[BusScope, Any] = {}
        self._lock = threading.Lock()

    async def send(
        self,
        bus_scope: BusScope,
        bus_name: str,
        object_path: str,
        notification: Notification,
        timeout: float,
    ) -> None:
        dbus = _ensure_main_loop(bus_scope)

        def _send() -> None:
            bus = self._bus_for(dbus, bus_scope)
            bus.call_blocking(
                bus_name,
                object_path,
                NOTIFIER_INTERFACE,
                NOTIFIER_MEMBER,
                Notification.SIGNATURE,
                notification.as_args(),
                timeout=timeout,
            )

        try:
            await asyncio.to_thread(_send)
        except dbus.exceptions.DBusException as exc:
            if exc.get_dbus_name() in _TIMEOUT_ERRORS:
                raise NotifierTimeoutError(bus_name, timeout) from exc
            raise NotifierDeliveryError(bus_name, str(exc)) from exc

    def _bus_for(self, dbus: Any, bus_scope: BusScope) -> Any:
        with self._lock:
            bus = self._buses.get(bus_scope)
            if bus is None or not bus.get_is_connected():
                bus = _open_private_bus(dbus, bus_scope)
                self._buses[bus_scope] = bus
            return bus

    async def close(self) -> None:
        with self._lock:
            buses, self._buses = list(self._buses.values()), {}
        for bus in buses:
            try:
                await asyncio.to_thread(bus.close)
            except Exception as exc:
                log.debug("notifier_bus_close_failed", error=str(exc))
