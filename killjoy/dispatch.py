"""Dispatch Engine — turns TransitionEvents into Notify calls.

For every event, the rules of the event's bus scope are evaluated in declared
order.  Each matching rule sends one ``Notify`` call to each of its notifiers,
in the order the rule lists them.  Overlapping rules are not deduplicated: a
notifier named by two matching rules is contacted twice.

A failing or slow notifier never affects the others.  Errors are logged and
the next send proceeds.
"""

from __future__ import annotations

import asyncio

from killjoy.bus.base import NotificationSender
from killjoy.events import Notification, TransitionEvent
from killjoy.exceptions import NotificationError, NotifierTimeoutError
from killjoy.logging import get_logger
from killjoy.settings import Settings

log = get_logger(__name__)

# Extra time granted on top of the bus reply timeout before a send is abandoned.
_TIMEOUT_GRACE = 1.0


class DispatchEngine:
    """Evaluates rules for TransitionEvents and delivers notifications."""

    def __init__(self, settings: Settings, sender: NotificationSender, timeout: float = 5.0) -> None:
        self._settings = settings
        self._sender = sender
        self._timeout = timeout

    async def on_transition(self, event: TransitionEvent) -> int:
        """Deliver notifications for *event*; return how many were acknowledged."""
        identity = event.identity
        rules = self._settings.matching_rules(
            identity.bus_scope, identity.unit_name, event.new_state
        )
        if not rules:
            log.debug("transition_unmatched", unit=str(identity), new_state=event.new_state.value)
            return 0

        notification = Notification.from_event(event)
        delivered = 0
        for rule in rules:
            for label in rule.notifiers:
                if await self._deliver(label, notification):
                    delivered += 1
        log.debug(
            "transition_dispatched",
            unit=str(identity),
            new_state=event.new_state.value,
            rules=len(rules),
            delivered=delivered,
        )
        return delivered

    async def _deliver(self, label: str, notification: Notification) -> bool:
        notifier = self._settings.notifier(label)
        try:
            await asyncio.wait_for(
                self._sender.send(
                    notifier.bus_scope,
                    notifier.bus_name,
                    notifier.object_path,
                    notification,
                    self._timeout,
                ),
                timeout=self._timeout + _TIMEOUT_GRACE,
            )
        except asyncio.TimeoutError:
            log.warning(
                "notify_timeout",
                notifier=label,
                bus_name=notifier.bus_name,
                timeout=self._timeout,
                unit=notification.unit_name,
            )
            return False
        except NotifierTimeoutError as exc:
            log.warning(
                "notify_timeout",
                notifier=label,
                bus_name=notifier.bus_name,
                timeout=exc.timeout,
                unit=notification.unit_name,
            )
            return False
        except NotificationError as exc:
            log.warning(
                "notify_failed",
                notifier=label,
                bus_name=notifier.bus_name,
                unit=notification.unit_name,
                error=exc.message,
            )
            return False
        except Exception as exc:
            log.error(
                "notify_error",
                notifier=label,
                bus_name=notifier.bus_name,
                unit=notification.unit_name,
                error=str(exc),
            )
            return False
        log.info(
            "notify_sent",
            notifier=label,
            unit=notification.unit_name,
            active_states=list(notification.active_states),
        )
        return True
