"""In-process event bus for SystemEvents.

The bus is the message-passing boundary between the workflow engine and
everything that reacts to it (audit log, admin alerts). Emitting only puts
the event on a bounded queue; a background worker fans it out to
subscribers, so a slow or broken sink never holds up a transition.

Usage:
    from src.admin.events import emit, subscribe

    subscribe(audit_on_event)                                    # all events
    subscribe(alert_engine.on_event, [EventType.REQUEST_FAILED])  # typed

    await emit(SystemEvent(event_type=EventType.REQUEST_SUBMITTED, request_id=record.id))
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

from src.config import settings
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]


def _name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Bounded async queue plus one worker task that dispatches to subscribers."""

    def __init__(self, max_size: int = 0) -> None:
        self._max_size = max_size
        self._global: list[EventHandler] = []
        self._typed: defaultdict[EventType, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: list[EventType] | None = None) -> None:
        """Register ``handler`` for ``event_types``, or for every event when None."""
        if event_types is None:
            self._global.append(handler)
            logger.info("Subscribed %s to all events", _name(handler))
            return
        for event_type in event_types:
            self._typed[event_type].append(handler)
        logger.info("Subscribed %s to %s", _name(handler), sorted(t.value for t in event_types))

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._global:
            self._global.remove(handler)
        for handlers in self._typed.values():
            if handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._global, *self._typed.get(event_type, [])]

    @property
    def subscriber_count(self) -> int:
        return len(self._global) + sum(len(h) for h in self._typed.values())

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Queue ``event`` for dispatch; starts the worker on first use.

        A full queue drops the event with a warning instead of blocking
        the caller.
        """
        queue = self._queue if self._queue is not None else self.start()
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Event queue full (%d), dropping %s (request=%s)",
                self._max_size,
                event.event_type.value,
                event.request_id,
            )
            return
        logger.debug("Event queued: %s (request=%s)", event.event_type.value, event.request_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Deliver one event to every matching handler concurrently."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed for %s: %r",
                    _name(handler),
                    event.event_type.value,
                    result,
                )

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> asyncio.Queue[SystemEvent]:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_size)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(self._queue))
            logger.info("Event worker started (%d subscribers)", self.subscriber_count)
        return self._queue

    async def stop(self) -> None:
        """Drain queued events, then cancel the worker."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        self._queue = None
        logger.info("Event worker stopped")

    async def _run(self, queue: asyncio.Queue[SystemEvent]) -> None:
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Event worker failed on %s", event.event_type.value)
            finally:
                queue.task_done()


# Module-level bus used by the whole app
bus = EventBus(max_size=settings.notifications.queue_size)

subscribe = bus.subscribe
unsubscribe = bus.unsubscribe


async def emit(event: SystemEvent) -> None:
    await bus.emit(event)


async def emit_safely(event: SystemEvent) -> None:
    """Emit without ever raising.

    Called right after a ledger write: a failing event bus must not turn a
    recorded transition into a reported failure.
    """
    try:
        await bus.emit(event)
    except Exception:
        logger.exception("Failed to emit %s (request=%s)", event.event_type.value, event.request_id)


PENDING_EVENTS_KEY = "pending_events"


def defer_until_commit(session: Any, event: SystemEvent) -> None:
    """Hold ``event`` on ``session.info`` until the session's transaction commits."""
    session.info.setdefault(PENDING_EVENTS_KEY, []).append(event)


async def publish_deferred(session: Any) -> int:
    """Emit the events held on a session that has just committed."""
    pending: list[SystemEvent] = session.info.pop(PENDING_EVENTS_KEY, [])
    for event in pending:
        await emit_safely(event)
    return len(pending)


def discard_deferred(session: Any) -> int:
    """Drop the events held on a session whose transaction rolled back."""
    dropped = session.info.pop(PENDING_EVENTS_KEY, [])
    if dropped:
        logger.info("Discarded %d events from a rolled-back transaction", len(dropped))
    return len(dropped)


async def start_event_system() -> None:
    """Call during FastAPI lifespan startup."""
    bus.start()


async def stop_event_system() -> None:
    """Call during FastAPI lifespan shutdown."""
    await bus.stop()
