"""Bus layer — service-manager connections and notifier delivery.

Available implementations
-------------------------
ManagerConnection       — abstract base class (base.py)
NotificationSender      — abstract base class (base.py)
DBusManagerConnection   — dbus-python + GLib (dbus_glib.py)
DBusNotificationSender  — dbus-python + GLib (dbus_glib.py)

dbus-python itself is imported lazily by ``dbus_glib``; importing this
package never requires it.
"""

from killjoy.bus.base import (
    ConnectionFactory,
    ManagerConnection,
    NotificationSender,
    RawUnitState,
    Signal,
    UnitNew,
    UnitRemoved,
    UnitStateChanged,
)
from killjoy.bus.dbus_glib import DBusManagerConnection, DBusNotificationSender

__all__ = [
    "ConnectionFactory",
    "ManagerConnection",
    "NotificationSender",
    "RawUnitState",
    "Signal",
    "UnitNew",
    "UnitRemoved",
    "UnitStateChanged",
    "DBusManagerConnection",
    "DBusNotificationSender",
]
