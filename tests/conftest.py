"""Shared pytest fixtures for the killjoy test suite."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from killjoy.bus.base import (
    ManagerConnection,
    NotificationSender,
    RawUnitState,
    UnitNew,
    UnitRemoved,
    UnitStateChanged,
)
from killjoy.events import BusScope, Notification
from killjoy.exceptions import (
    BusCallError,
    BusConnectionError,
    NotifierDeliveryError,
    NotifierTimeoutError,
)
from killjoy.settings import Settings

# ---------------------------------------------------------------------------
# In-memory bus
# ---------------------------------------------------------------------------


class FakeBus:
    """Shared state of one simulated service manager.

    Survives reconnection: every ``FakeManagerConnection`` built by the
    factory looks at the same ``units`` mapping.
    """

    def __init__(self, units: dict[str, str] | None = None) -> None:
        self.units: dict[str, str] = dict(units or {})
        self.timestamps: dict[str, int] = {}
        self.connections: list[FakeManagerConnection] = []
        self.connect_failures = 0
        self.always_fail_connect = False
        self.failing_units: set[str] = set()
        self.calls: list[str] = []

    def factory(self, bus_scope: BusScope) -> "FakeManagerConnection":
        connection = FakeManagerConnection(bus_scope, self)
        self.connections.append(connection)
        return connection

    @property
    def current(self) -> "FakeManagerConnection":
        return self.connections[-1]


class FakeManagerConnection(ManagerConnection):
    def __init__(self, bus_scope: BusScope, bus: FakeBus) -> None:
        super().__init__(bus_scope)
        self.bus = bus
        self.subscriptions: set[str] = set()
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.bus.calls.append("connect")
        if self.bus.always_fail_connect or self.bus.connect_failures > 0:
            self.bus.connect_failures = max(0, self.bus.connect_failures - 1)
            raise BusConnectionError(self.bus_scope.value, "connection refused")
        self.connected = True

    async def close(self) -> None:
        self.closed = True
        self.connected = False

    async def subscribe_manager(self) -> None:
        self.bus.calls.append("subscribe_manager")

    async def list_units(self) -> list[str]:
        self.bus.calls.append("list_units")
        return list(self.bus.units)

    async def subscribe_unit(self, unit_name: str) -> Any:
        self.bus.calls.append(f"subscribe_unit:{unit_name}")
        if unit_name in self.bus.failing_units:
            raise BusCallError("GetUnit", f"Unit {unit_name} not loaded.")
        self.subscriptions.add(unit_name)
        return unit_name

    async def unsubscribe_unit(self, handle: Any) -> None:
        self.subscriptions.discard(handle)

    async def get_unit_state(self, unit_name: str) -> RawUnitState:
        self.bus.calls.append(f"get_unit_state:{unit_name}")
        if unit_name not in self.bus.units:
            raise BusCallError("GetAll", f"Unit {unit_name} not loaded.")
        return RawUnitState(
            unit_name, self.bus.units[unit_name], self.bus.timestamps.get(unit_name)
        )

    # -- test helpers ---------------------------------------------------------

    def emit_state(self, unit_name: str, active_state: str, mono: int | None = None) -> None:
        self.bus.units[unit_name] = active_state
        self._deliver(UnitStateChanged(RawUnitState(unit_name, active_state, mono, mono)))

    def emit_new(self, unit_name: str, active_state: str = "inactive") -> None:
        self.bus.units[unit_name] = active_state
        self._deliver(UnitNew(unit_name))

    def emit_removed(self, unit_name: str) -> None:
        self.bus.units.pop(unit_name, None)
        self._deliver(UnitRemoved(unit_name))

    def drop(self) -> None:
        self._deliver_disconnect()


class RecordingSender(NotificationSender):
    """Records every ``send`` call; can be told to fail, hang or lag."""

    def __init__(self) -> None:
        self.sent: list[tuple[BusScope, str, str, Notification]] = []
        self.failing: set[str] = set()
        self.timing_out: set[str] = set()
        self.hanging: set[str] = set()
        self.delays: dict[str, float] = {}
        """Seconds to wait before recording, keyed by the new active state."""
        self.closed = False

    async def send(
        self,
        bus_scope: BusScope,
        bus_name: str,
        object_path: str,
        notification: Notification,
        timeout: float,
    ) -> None:
        delay = self.delays.get(notification.active_states[0])
        if delay:
            await asyncio.sleep(delay)
        if bus_name in self.hanging:
            await asyncio.sleep(3600)
        if bus_name in self.failing:
            raise NotifierDeliveryError(bus_name, "org.freedesktop.DBus.Error.ServiceUnknown")
        if bus_name in self.timing_out:
            raise NotifierTimeoutError(bus_name, timeout)
        self.sent.append((bus_scope, bus_name, object_path, notification))

    async def close(self) -> None:
        self.closed = True

    @property
    def bus_names(self) -> list[str]:
        return [bus_name for _, bus_name, _, _ in self.sent]


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll *predicate* until it is true, yielding to the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_document(
    rules: list[dict[str, Any]] | None = None,
    notifiers: dict[str, dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "version": 1,
        "rules": rules if rules is not None else [],
        "notifiers": notifiers if notifiers is not None else {},
    }


def make_rule(
    expression: str,
    expression_type: str = "unit name",
    active_states: list[str] | None = None,
    notifiers: list[str] | None = None,
    bus_type: str = "system",
) -> dict[str, Any]:
    return {
        "bus_type": bus_type,
        "active_states": active_states if active_states is not None else ["failed"],
        "expression": expression,
        "expression_type": expression_type,
        "notifiers": notifiers if notifiers is not None else ["n1"],
    }


@pytest.fixture
def fake_bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def basic_document() -> dict[str, Any]:
    return make_document(
        rules=[make_rule("foo.service", active_states=["failed"], notifiers=["n1"])],
        notifiers={"n1": {"bus_type": "session", "bus_name": "org.example.Notifier"}},
    )


@pytest.fixture
def basic_settings(basic_document: dict[str, Any]) -> Settings:
    return Settings.from_document(basic_document)


@pytest.fixture
def settings_file(tmp_path: Path, basic_document: dict[str, Any]) -> Path:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps(basic_document))
    return path
