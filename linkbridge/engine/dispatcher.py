"""
linkbridge.engine.dispatcher — Staged Event Fan-Out
====================================================

**Why this file exists:**
Game actions arrive on the game server's threads, Discord events arrive on
the asyncio loop, and timers fire on their own threads.  All of them end up
here.  :meth:`EventDispatcher.dispatch` wraps the occurrence in a
:class:`BridgeEvent` and runs every subscriber on the bot's event loop in a
fixed stage order:

1. ``STORAGE``  — persisted state reflects the event first.
2. ``IDENTITY`` — account-link status is current before side effects.
3. ``MODULES``  — the module orchestrator.
4. ``PRESENCE`` — the Discord presence string (join/login/logout/timer).

Each handler is isolated: an exception is logged and the next handler
still runs.  There is no per-event queue, so overlapping events are not
serialized relative to each other.

Usage::

    dispatcher = EventDispatcher()
    dispatcher.bind_loop(asyncio.get_running_loop())
    dispatcher.subscribe(DispatchStage.MODULES, orchestrator.update)

    dispatcher.dispatch(EventType.TRADE, trade)      # from any thread
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import inspect
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from linkbridge.engine.events import BridgeEvent, EventType

logger = logging.getLogger(__name__)

Handler = Callable[[BridgeEvent], Awaitable[None] | None]


class DispatchStage(enum.IntEnum):
    STORAGE = 1
    IDENTITY = 2
    MODULES = 3
    PRESENCE = 4


@dataclass(slots=True)
class _Subscription:
    handler: Handler
    kinds: EventType | None


class EventDispatcher:
    """Fans each event out to its subscribers, one stage at a time."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._lock = threading.Lock()
        self._stages: dict[DispatchStage, list[_Subscription]] = {
            stage: [] for stage in DispatchStage
        }
        self._pending: set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the loop that events from foreign threads are scheduled on."""
        self._loop = loop

    def subscribe(
        self,
        stage: DispatchStage,
        handler: Handler,
        kinds: EventType | None = None,
    ) -> None:
        """Register *handler* in *stage*, optionally only for the *kinds* mask."""
        with self._lock:
            self._stages[stage].append(_Subscription(handler, kinds))

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            for subs in self._stages.values():
                subs[:] = [s for s in subs if s.handler != handler]

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------
    def dispatch(
        self, kind: EventType, *data: object,
    ) -> asyncio.Task | concurrent.futures.Future | None:
        """Schedule *kind* for fan-out and return a handle to await if wanted.

        Never raises.  Returns None if there is no loop to run on.
        """
        try:
            event = BridgeEvent(kind=kind, data=tuple(data))

            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None

            if running is not None and (self._loop is None or running is self._loop):
                task = running.create_task(self._run(event), name=f"dispatch-{kind.name}")
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
                return task

            loop = self._loop
            if loop is None or loop.is_closed():
                logger.warning("Cannot dispatch event '%s': no event loop available", kind.name)
                return None
            return asyncio.run_coroutine_threadsafe(self._run(event), loop)
        except Exception:
            logger.exception("Failed to dispatch event %s", kind)
            return None

    async def _run(self, event: BridgeEvent) -> None:
        for stage in DispatchStage:
            with self._lock:
                subscriptions = list(self._stages[stage])
            for sub in subscriptions:
                if sub.kinds is not None and not (event.kind & sub.kinds):
                    continue
                try:
                    result = sub.handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        "Event handler %r failed in stage %s for %s",
                        sub.handler, stage.name, event.kind,
                    )

    async def drain(self) -> None:
        """Wait for every dispatch started on this loop to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
