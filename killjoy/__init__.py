"""killjoy — Monitor systemd units and notify D-Bus services of state changes.

killjoy watches units on the system and/or session bus.  Whenever a unit
selected by a rule enters one of the rule's active states, every notifier the
rule names receives a ``Notify`` call.

Architecture (bottom to top):
    1. Units & expressions — active-state vocabulary, unit-name matching
    2. Settings            — JSON rules/notifiers document, validated with pydantic
    3. Bus                 — service-manager connection and notifier delivery (D-Bus)
    4. Registry & session  — per-bus-scope unit tracking, transitions, reconnects
    5. Dispatch            — rule evaluation and Notify fan-out
    6. Supervisor & CLI    — process lifecycle, ``killjoy`` command
"""

__version__ = "0.1.0"

from killjoy.settings import Settings

__all__ = [
    "__version__",
    "Settings",
]
