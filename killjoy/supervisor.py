"""Supervisor — lifecycle orchestrator for the monitoring daemon.

Starts one Bus Session per bus scope referenced by the settings, feeds their
TransitionEvents to the Dispatch Engine, and shuts everything down cleanly.

Lifecycle::

    supervisor = Supervisor(settings, connection_factory, sender)
    exit_code = await supervisor.serve()   # until SIGINT/SIGTERM or total failure

Each session runs in its own asyncio task and hands its events to a FIFO
queue drained by one dispatch worker per session.  A slow notifier therefore
never holds up signal processing, and notifications for one bus scope are
delivered in the order the transitions happened.  A session that fails is
logged and left stopped; the process keeps running as long as at least one
session is alive.
"""

from __future__ import annotations

import asyncio
import signal

from killjoy.bus.base import ConnectionFactory, NotificationSender
from killjoy.dispatch import DispatchEngine
from killjoy.events import BusScope, TransitionEvent
from killjoy.exceptions import SessionFailedError
from killjoy.logging import bind_bus_context, get_logger
from killjoy.session import BusSession
from killjoy.settings import Settings

log = get_logger(__name__)


class Supervisor:
    """Owns the Bus Sessions, the Dispatch Engine and the dispatch workers."""

    def __init__(
        self,
        settings: Settings,
        connection_factory: ConnectionFactory,
        sender: NotificationSender,
        *,
        notify_timeout: float = 5.0,
        reconnect_attempts: int = 5,
        reconnect_backoff: float = 1.0,
        reconnect_backoff_max: float = 30.0,
    ) -> None:
        self._settings = settings
        self._sender = sender
        self.dispatcher = DispatchEngine(settings, sender, timeout=notify_timeout)
        self.sessions: dict[BusScope, BusSession] = {
            scope: BusSession(
                scope,
                settings,
                connection_factory,
                reconnect_attempts=reconnect_attempts,
                reconnect_backoff=reconnect_backoff,
                reconnect_backoff_max=reconnect_backoff_max,
            )
            for scope in settings.bus_scopes()
        }
        self.failures: dict[BusScope, str] = {}
        self._tasks: dict[BusScope, asyncio.Task[None]] = {}
        self._queues: dict[BusScope, asyncio.Queue[TransitionEvent]] = {}
        self._workers: dict[BusScope, asyncio.Task[None]] = {}
        self._pending = 0

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        """Start one task per Bus Session."""
        if not self.sessions:
            log.warning("no_rules_configured")
        for scope, session in self.sessions.items():
            if scope in self._tasks:
                continue
            queue: asyncio.Queue[TransitionEvent] = asyncio.Queue()
            self._queues[scope] = queue
            self._workers[scope] = asyncio.create_task(
                self._dispatch_worker(scope, queue), name=f"dispatch_{scope.value}"
            )
            self._tasks[scope] = asyncio.create_task(
                self._consume(session), name=f"session_{scope.value}"
            )
        log.info("supervisor_started", bus_scopes=[s.value for s in self.sessions])

    async def wait(self) -> int:
        """Wait until every session has stopped; return the process exit code."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        if self.sessions and len(self.failures) == len(self.sessions):
            log.error("all_sessions_failed", failures={s.value: r for s, r in self.failures.items()})
            return 1
        return 0

    async def stop(self) -> None:
        """Cancel the sessions, then let queued dispatches finish."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self.pending_dispatches:
            log.debug("awaiting_dispatches", pending=self.pending_dispatches)
        for queue in self._queues.values():
            await queue.join()
        for worker in self._workers.values():
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        await self._sender.close()
        log.info("supervisor_stopped")

    @property
    def pending_dispatches(self) -> int:
        """Events queued or being dispatched, across every session."""
        return self._pending

    async def serve(self) -> int:
        """Run until SIGINT/SIGTERM or until every session has failed."""
        loop = asyncio.get_running_loop()
        stop_requested = asyncio.Event()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_requested.set)
        try:
            await self.start()
            waiter = asyncio.create_task(self.wait(), name="supervisor_wait")
            stopper = asyncio.create_task(stop_requested.wait(), name="supervisor_stop")
            await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if stop_requested.is_set():
                log.info("shutdown_requested")
            await self.stop()
            exit_code = await waiter
            return 0 if stop_requested.is_set() else exit_code
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)

    # ---------------------------------------------------------------------------
    # Internal
    # ---------------------------------------------------------------------------

    async def _consume(self, session: BusSession) -> None:
        bind_bus_context(session.bus_scope.value)
        queue = self._queues[session.bus_scope]
        try:
            async for event in session.transitions():
                self._pending += 1
                queue.put_nowait(event)
        except SessionFailedError as exc:
            self.failures[session.bus_scope] = exc.reason
            log.error("session_failed", reason=exc.reason, attempts=exc.attempts)
        except Exception as exc:
            self.failures[session.bus_scope] = str(exc) or type(exc).__name__
            log.exception("session_crashed")

    async def _dispatch_worker(
        self, scope: BusScope, queue: asyncio.Queue[TransitionEvent]
    ) -> None:
        bind_bus_context(scope.value)
        while True:
            event = await queue.get()
            try:
                await self.dispatcher.on_transition(event)
            except Exception:
                log.exception("dispatch_failed", unit=event.identity.unit_name)
            finally:
                self._pending -= 1
                queue.task_done()
