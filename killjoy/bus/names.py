"""D-Bus names, paths and interfaces used by killjoy.

Pure helpers only; nothing here touches a live bus, so the settings layer
can validate notifier addresses without importing a D-Bus binding.
"""

from __future__ import annotations

import re

SYSTEMD_BUS_NAME = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
SYSTEMD_MANAGER_INTERFACE = "org.freedesktop.systemd1.Manager"
SYSTEMD_UNIT_INTERFACE = "org.freedesktop.systemd1.Unit"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

NOTIFIER_INTERFACE = "name.jerebear.KilljoyNotifier1"
NOTIFIER_MEMBER = "Notify"

_MAX_NAME_LENGTH = 255
_BUS_NAME_ELEMENT = re.compile(r"[A-Za-z_-][A-Za-z0-9_-]*")


def is_valid_bus_name(bus_name: str) -> bool:
    """Tell whether *bus_name* is a valid well-known D-Bus bus name.

    Unique connection names (``:1.42``) are rejected: a notifier must be
    addressable across restarts.
    """
    if not bus_name or len(bus_name) > _MAX_NAME_LENGTH:
        return False
    elements = bus_name.split(".")
    if len(elements) < 2:
        return False
    return all(_BUS_NAME_ELEMENT.fullmatch(element) for element in elements)


def path_for_bus_name(bus_name: str) -> str:
    """Given a bus name ``foo.bar.Biz1``, return the object path ``/foo/bar/Biz1``.

    Hyphens are legal in bus names but not in object paths; they become
    underscores.
    """
    return "/" + bus_name.replace(".", "/").replace("-", "_")
