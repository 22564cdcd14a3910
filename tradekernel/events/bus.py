"""
Synchronous event bus for committed kernel events.

CRITICAL PROPERTIES:
1. Handlers registered by event type
2. Dispatch runs in the publisher's thread, after the commit, outside any trade lock
3. FIFO per thread: an event published while this thread is already
   dispatching is queued and drained by the outer loop, never nested
4. Handler failures are isolated (logged and counted, never re-raised)
5. on_dispatched only runs when every handler succeeded; a failed event
   stays pending in the outbox for redelivery
6. No background thread: nothing outlives the publish() call

USAGE:
    bus = TradeEventBus()
    bus.subscribe(EventType.STATE_TRANSITION, handle_transition)

    # From any thread, after the state write committed:
    bus.publish(TradeEvent(EventType.STATE_TRANSITION, "T-1", {...}))
"""

import threading
from collections import deque
from typing import Callable, Dict, List, Optional

from tradekernel.logging import get_logger, LogStream

from .types import EventType, TradeEvent

Handler = Callable[[TradeEvent], None]
DispatchCallback = Callable[[TradeEvent], None]


class TradeEventBus:
    """Thread-safe synchronous publish/subscribe for TradeEvents."""

    def __init__(self):
        self.logger = get_logger(LogStream.SYSTEM)

        self._handlers: Dict[EventType, List[Handler]] = {}
        self._handlers_lock = threading.Lock()

        # Per-thread pending queue + "currently dispatching" flag
        self._local = threading.local()

        self._stats_lock = threading.Lock()
        self._events_published = 0
        self._events_failed = 0

        self.logger.info("TradeEventBus initialized")

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """
        Register handler for event type.

        Example:
            def on_transition(event: TradeEvent):
                print(f"Trade {event.trade_id} moved to {event.payload['to_state']}")

            bus.subscribe(EventType.STATE_TRANSITION, on_transition)
        """
        with self._handlers_lock:
            self._handlers.setdefault(event_type, []).append(handler)
            count = len(self._handlers[event_type])

        self.logger.debug(f"Handler registered for {event_type.value}", extra={
            "event_type": event_type.value,
            "handler": getattr(handler, "__name__", repr(handler)),
            "handler_count": count,
        })

    def unsubscribe(self, event_type: EventType, handler: Handler) -> bool:
        with self._handlers_lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def publish(self, event: TradeEvent, on_dispatched: Optional[DispatchCallback] = None) -> None:
        """
        Deliver event to every subscriber of its type.

        If this thread is already inside publish() (a handler published a
        follow-up event), the event is queued and delivered after the
        current one finishes.

        on_dispatched runs once every handler has handled the event without
        raising (the engine uses it to mark the outbox row published). If
        any handler failed it is skipped.
        """
        pending = getattr(self._local, "pending", None)
        if pending is None:
            pending = self._local.pending = deque()
        pending.append((event, on_dispatched))

        if getattr(self._local, "dispatching", False):
            return

        self._local.dispatching = True
        try:
            while pending:
                queued, callback = pending.popleft()
                delivered = self._dispatch_event(queued)
                if callback is None:
                    continue
                if delivered:
                    self._run_callback(queued, callback)
                else:
                    self.logger.warning("Event left pending after handler failure", extra={
                        "event_id": queued.event_id,
                        "trade_id": queued.trade_id,
                    })
        finally:
            self._local.dispatching = False
            pending.clear()

    def _run_callback(self, event: TradeEvent, callback: DispatchCallback) -> None:
        try:
            callback(event)
        except Exception as e:
            # Event stays pending in the outbox and is redelivered later
            self.logger.error("Post-dispatch callback failed", extra={
                "event_id": event.event_id,
                "trade_id": event.trade_id,
                "error": str(e),
            }, exc_info=True)

    def _dispatch_event(self, event: TradeEvent) -> bool:
        """Run every handler. Returns False if any of them raised."""
        with self._handlers_lock:
            handlers = list(self._handlers.get(event.event_type, []))

        with self._stats_lock:
            self._events_published += 1

        if not handlers:
            self.logger.debug(f"No handlers for {event.event_type.value}", extra={
                "event_id": event.event_id,
            })
            return True

        delivered = True
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # A failing subscriber never blocks the others or undoes the commit
                delivered = False
                with self._stats_lock:
                    self._events_failed += 1
                self.logger.error(
                    f"Handler failed for {event.event_type.value}",
                    extra={
                        "event_id": event.event_id,
                        "trade_id": event.trade_id,
                        "handler": getattr(handler, "__name__", repr(handler)),
                        "error": str(e),
                    },
                    exc_info=True,
                )
        return delivered

    def get_stats(self) -> Dict:
        with self._stats_lock, self._handlers_lock:
            return {
                "events_published": self._events_published,
                "events_failed": self._events_failed,
                "registered_event_types": len(self._handlers),
            }
