"""
TradeEventBus tests.

TESTS:
    1.  Subscribers of the event type receive the event; others do not.
    2.  A failing handler does not stop the remaining handlers.
    3.  Events published from inside a handler are queued, not nested (FIFO).
    4.  on_dispatched runs after every handler saw the event, and is
        skipped when a handler failed.
    5.  A failing on_dispatched callback is logged, not raised.
    6.  unsubscribe removes a handler.
    7.  TradeEvent round-trips through to_dict/from_dict.
"""

from tradekernel.events import EventType, TradeEvent, TradeEventBus


def _event(trade_id="T-1", event_type=EventType.STATE_TRANSITION, **payload):
    return TradeEvent(event_type, trade_id, payload)


class TestDelivery:

    def test_routes_by_type(self):
        bus = TradeEventBus()
        transitions, contexts = [], []
        bus.subscribe(EventType.STATE_TRANSITION, transitions.append)
        bus.subscribe(EventType.CONTEXT_UPDATED, contexts.append)

        event = _event(to_state="rfq_open")
        bus.publish(event)

        assert transitions == [event]
        assert contexts == []
        assert bus.get_stats()["events_published"] == 1

    def test_failing_handler_isolated(self):
        bus = TradeEventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.STATE_TRANSITION, broken)
        bus.subscribe(EventType.STATE_TRANSITION, seen.append)
        bus.publish(_event())

        assert len(seen) == 1
        assert bus.get_stats()["events_failed"] == 1

    def test_unsubscribe(self):
        bus = TradeEventBus()
        seen = []
        bus.subscribe(EventType.STATE_TRANSITION, seen.append)
        assert bus.unsubscribe(EventType.STATE_TRANSITION, seen.append)
        assert not bus.unsubscribe(EventType.STATE_TRANSITION, seen.append)
        bus.publish(_event())
        assert seen == []


class TestQueuedDispatch:

    def test_nested_publish_is_queued_fifo(self):
        bus = TradeEventBus()
        log = []
        depth = {"now": 0, "max": 0}

        def handler(event):
            depth["now"] += 1
            depth["max"] = max(depth["max"], depth["now"])
            log.append(event.payload["n"])
            if event.payload["n"] < 3:
                bus.publish(_event(n=event.payload["n"] + 1))
                bus.publish(_event(n=event.payload["n"] + 10))
            depth["now"] -= 1

        bus.subscribe(EventType.STATE_TRANSITION, handler)
        bus.publish(_event(n=1))

        assert depth["max"] == 1
        assert log == [1, 2, 11, 3, 12]

    def test_on_dispatched_after_handlers(self):
        bus = TradeEventBus()
        order = []
        bus.subscribe(EventType.STATE_TRANSITION, lambda e: order.append("handler"))

        bus.publish(_event(), on_dispatched=lambda e: order.append("dispatched"))
        assert order == ["handler", "dispatched"]

    def test_on_dispatched_for_queued_event_runs_after_its_delivery(self):
        bus = TradeEventBus()
        order = []

        def handler(event):
            order.append(f"handle:{event.payload['n']}")
            if event.payload["n"] == 1:
                bus.publish(_event(n=2), on_dispatched=lambda e: order.append("done:2"))
                order.append("queued:2")

        bus.subscribe(EventType.STATE_TRANSITION, handler)
        bus.publish(_event(n=1), on_dispatched=lambda e: order.append("done:1"))

        assert order == ["handle:1", "queued:2", "done:1", "handle:2", "done:2"]

    def test_failed_handler_skips_on_dispatched(self):
        bus = TradeEventBus()
        seen, done = [], []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.STATE_TRANSITION, broken)
        bus.subscribe(EventType.STATE_TRANSITION, seen.append)
        bus.publish(_event(n=1), on_dispatched=done.append)

        assert len(seen) == 1
        assert done == []

    def test_failing_callback_not_raised(self):
        bus = TradeEventBus()
        seen = []
        bus.subscribe(EventType.STATE_TRANSITION, seen.append)

        def broken(event):
            raise RuntimeError("store gone")

        bus.publish(_event(n=1), on_dispatched=broken)
        bus.publish(_event(n=2))
        assert [e.payload["n"] for e in seen] == [1, 2]


class TestEventModel:

    def test_round_trip(self):
        event = TradeEvent(
            EventType.CONTEXT_UPDATED, "T-9", {"updates": {"hs_code": "8471"}},
            caused_by_rule="auto_customs_clearance",
        )
        restored = TradeEvent.from_dict(event.to_dict())
        assert restored == event
        assert restored.event_id.startswith("EVT-")

    def test_ids_are_unique(self):
        assert _event().event_id != _event().event_id
