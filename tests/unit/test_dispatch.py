"""Unit tests — dispatch.py (DispatchEngine)."""

from __future__ import annotations

import pytest
from conftest import RecordingSender, make_document, make_rule

from killjoy.dispatch import DispatchEngine
from killjoy.events import BusScope, TransitionEvent, UnitIdentity
from killjoy.settings import Settings
from killjoy.units import ActiveState

NOTIFIERS = {
    "n1": {"bus_type": "session", "bus_name": "org.example.One"},
    "n2": {"bus_type": "system", "bus_name": "org.example.Two"},
    "n3": {"bus_type": "session", "bus_name": "org.example.Three"},
}


def _event(
    unit: str,
    new: ActiveState,
    previous: ActiveState = ActiveState.ACTIVE,
    scope: BusScope = BusScope.SYSTEM,
) -> TransitionEvent:
    return TransitionEvent(UnitIdentity(scope, unit), previous, new, timestamp=1234)


def _engine(rules: list[dict], sender: RecordingSender, timeout: float = 5.0) -> DispatchEngine:
    return DispatchEngine(Settings.from_document(make_document(rules, NOTIFIERS)), sender, timeout)


@pytest.mark.unit
class TestDispatchMatching:
    async def test_matching_transition_notifies(self, sender: RecordingSender) -> None:
        engine = _engine([make_rule("foo.service", active_states=["failed"], notifiers=["n1"])], sender)
        delivered = await engine.on_transition(_event("foo.service", ActiveState.FAILED))
        assert delivered == 1
        scope, bus_name, path, notification = sender.sent[0]
        assert scope is BusScope.SESSION
        assert bus_name == "org.example.One"
        assert path == "/org/example/One"
        assert notification.unit_name == "foo.service"
        assert notification.active_states == ("failed", "active")
        assert notification.timestamp == 1234
        assert notification.bus_scope == "system"

    async def test_other_unit_not_notified(self, sender: RecordingSender) -> None:
        engine = _engine([make_rule("foo.service", active_states=["failed"])], sender)
        assert await engine.on_transition(_event("bar.service", ActiveState.FAILED)) == 0
        assert sender.sent == []

    async def test_state_not_of_interest(self, sender: RecordingSender) -> None:
        engine = _engine([make_rule("foo.service", active_states=["failed"])], sender)
        assert await engine.on_transition(_event("foo.service", ActiveState.INACTIVE)) == 0

    async def test_unit_type_rule(self, sender: RecordingSender) -> None:
        engine = _engine([make_rule(".timer", "unit type", ["active"], ["n1"])], sender)
        await engine.on_transition(_event("backup.timer", ActiveState.ACTIVE, ActiveState.INACTIVE))
        await engine.on_transition(_event("backup.service", ActiveState.ACTIVE, ActiveState.INACTIVE))
        assert [n.unit_name for _, _, _, n in sender.sent] == ["backup.timer"]

    async def test_rule_for_other_scope_ignored(self, sender: RecordingSender) -> None:
        engine = _engine([make_rule("foo.service", bus_type="session")], sender)
        assert await engine.on_transition(_event("foo.service", ActiveState.FAILED)) == 0

    async def test_overlapping_rules_send_once_per_rule(self, sender: RecordingSender) -> None:
        engine = _engine(
            [
                make_rule("foo.service", active_states=["failed"], notifiers=["n1", "n2"]),
                make_rule(r"foo\..*", "regex", ["failed"], ["n1"]),
            ],
            sender,
        )
        assert await engine.on_transition(_event("foo.service", ActiveState.FAILED)) == 3
        assert sender.bus_names == ["org.example.One", "org.example.Two", "org.example.One"]


@pytest.mark.unit
class TestDispatchFailureIsolation:
    async def test_failing_notifier_does_not_block_others(self, sender: RecordingSender) -> None:
        sender.failing.add("org.example.One")
        engine = _engine([make_rule("foo.service", notifiers=["n1", "n2", "n3"])], sender)
        assert await engine.on_transition(_event("foo.service", ActiveState.FAILED)) == 2
        assert sender.bus_names == ["org.example.Two", "org.example.Three"]

    async def test_timeout_reported_by_sender(self, sender: RecordingSender) -> None:
        sender.timing_out.add("org.example.Two")
        engine = _engine([make_rule("foo.service", notifiers=["n2", "n3"])], sender)
        assert await engine.on_transition(_event("foo.service", ActiveState.FAILED)) == 1
        assert sender.bus_names == ["org.example.Three"]

    async def test_hanging_sender_is_abandoned(self, sender: RecordingSender) -> None:
        sender.hanging.add("org.example.One")
        engine = _engine([make_rule("foo.service", notifiers=["n1", "n2"])], sender, timeout=0.01)
        assert await engine.on_transition(_event("foo.service", ActiveState.FAILED)) == 1
        assert sender.bus_names == ["org.example.Two"]

    async def test_unexpected_error_is_contained(self, sender: RecordingSender) -> None:
        async def broken(*args, **kwargs):
            raise RuntimeError("boom")

        sender.send = broken  # type: ignore[method-assign]
        engine = _engine([make_rule("foo.service", notifiers=["n1"])], sender)
        assert await engine.on_transition(_event("foo.service", ActiveState.FAILED)) == 0
