"""killjoy — Exception hierarchy.

All exceptions raised by the daemon inherit from KilljoyError so that callers
can catch the full family with a single except clause when needed.

Hierarchy:
    KilljoyError
    ├── SettingsError
    │   ├── SettingsNotFoundError
    │   ├── SettingsParseError
    │   └── SettingsValidationError
    ├── UnitError
    │   └── UnknownActiveStateError
    ├── BusError
    │   ├── BusConnectionError
    │   ├── BusCallError
    │   ├── BusDisconnectedError
    │   └── SessionFailedError
    └── NotificationError
        ├── NotifierDeliveryError
        └── NotifierTimeoutError
"""

from __future__ import annotations

from typing import Any


class KilljoyError(Exception):
    """Base exception for all killjoy errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Settings document
# ---------------------------------------------------------------------------


class SettingsError(KilljoyError):
    """Base for all settings-document errors.  Always fatal at startup."""


class SettingsNotFoundError(SettingsError):
    """No settings file was found in any of the searched locations."""

    def __init__(self, searched: list[str]) -> None:
        super().__init__(
            "Failed to find a settings file in $XDG_CONFIG_HOME or $XDG_CONFIG_DIRS. "
            f"Searched: {', '.join(searched)}",
            context={"searched": searched},
        )
        self.searched = searched


class SettingsParseError(SettingsError):
    """The settings file could not be read or is not valid JSON."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Failed to read settings file '{path}': {reason}",
            context={"path": path, "reason": reason},
        )
        self.path = path
        self.reason = reason


class SettingsValidationError(SettingsError):
    """The settings document is well-formed JSON but semantically invalid."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, context={"validation_errors": errors or []})
        self.errors = errors or []


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------


class UnitError(KilljoyError):
    """Base for errors concerning unit data reported by the service manager."""


class UnknownActiveStateError(UnitError, ValueError):
    """A unit reported an ActiveState outside the known enumeration."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Found invalid active state: {value}", context={"value": value})
        self.value = value


# ---------------------------------------------------------------------------
# Bus layer
# ---------------------------------------------------------------------------


class BusError(KilljoyError):
    """Base for all message-bus errors."""


class BusConnectionError(BusError):
    """Connecting to a bus failed."""

    def __init__(self, bus_scope: str, reason: str) -> None:
        super().__init__(
            f"Failed to connect to {bus_scope} D-Bus bus: {reason}",
            context={"bus_scope": bus_scope, "reason": reason},
        )
        self.bus_scope = bus_scope
        self.reason = reason


class BusCallError(BusError):
    """A method call or match-rule operation on the bus failed."""

    def __init__(self, call: str, reason: str, error_name: str | None = None) -> None:
        super().__init__(
            f"Failed to call {call}: {reason}",
            context={"call": call, "reason": reason, "error_name": error_name},
        )
        self.call = call
        self.reason = reason
        self.error_name = error_name


class BusDisconnectedError(BusError):
    """An established bus connection was lost."""

    def __init__(self, bus_scope: str) -> None:
        super().__init__(
            f"Lost connection to {bus_scope} D-Bus bus",
            context={"bus_scope": bus_scope},
        )
        self.bus_scope = bus_scope


class SessionFailedError(BusError):
    """A Bus Session gave up.  Fatal for that scope, not for the process."""

    def __init__(self, bus_scope: str, reason: str, attempts: int = 0) -> None:
        super().__init__(
            f"Monitoring of {bus_scope} bus stopped: {reason}",
            context={"bus_scope": bus_scope, "reason": reason, "attempts": attempts},
        )
        self.bus_scope = bus_scope
        self.reason = reason
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Notification delivery
# ---------------------------------------------------------------------------


class NotificationError(KilljoyError):
    """Base for notification delivery errors.  Always isolated per send."""


class NotifierDeliveryError(NotificationError):
    """A notifier could not be reached or returned an error."""

    def __init__(self, notifier: str, reason: str) -> None:
        super().__init__(
            f"Error occurred when contacting notifier '{notifier}': {reason}",
            context={"notifier": notifier, "reason": reason},
        )
        self.notifier = notifier
        self.reason = reason


class NotifierTimeoutError(NotificationError):
    """A notifier did not reply within the configured timeout."""

    def __init__(self, notifier: str, timeout: float) -> None:
        super().__init__(
            f"Notifier '{notifier}' did not reply within {timeout:.1f}s",
            context={"notifier": notifier, "timeout": timeout},
        )
        self.notifier = notifier
        self.timeout = timeout
