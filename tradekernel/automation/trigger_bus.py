"""
Automation trigger bus.

Subscribes to committed kernel events and runs the automation rules
against a fresh trade snapshot.

LOOP PREVENTION:
- Each event_id is processed once (bounded memory of processed ids), so
  outbox redelivery never double-fires
- A rule never runs for an event its own transition produced
- At most one attempt per rule per triggering event; blocked attempts
  are recorded and not retried
"""

import threading
import uuid
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from tradekernel.events import EventType, TradeEvent, TradeEventBus
from tradekernel.exceptions import TradeNotFoundError
from tradekernel.logging import get_logger, LogStream
from tradekernel.state.engine import TransitionEngine
from tradekernel.state.models import Actor, AutomationEvent

from .rules import DEFAULT_RULES, AutomationRule

SUBSCRIBED_EVENTS = (EventType.STATE_TRANSITION, EventType.CONTEXT_UPDATED)


class AutomationTriggerBus:
    """
    Rule runner wired to the event bus.

    USAGE:
        trigger_bus = AutomationTriggerBus(engine)
        trigger_bus.attach(event_bus)
    """

    def __init__(
        self,
        engine: TransitionEngine,
        rules: Iterable[AutomationRule] = DEFAULT_RULES,
        disabled_rules: Iterable[str] = (),
        dedupe_window: int = 10_000,
    ):
        self.engine = engine
        rules = list(rules)
        disabled = set(disabled_rules)
        self.rules: List[AutomationRule] = [r for r in rules if r.name not in disabled]
        self.dedupe_window = dedupe_window
        self.logger = get_logger(LogStream.AUTOMATION)

        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._seen_lock = threading.Lock()
        self._bus: Optional[TradeEventBus] = None

        self._stats_lock = threading.Lock()
        self._stats = {"events_seen": 0, "duplicates": 0, "fired": 0, "applied": 0, "blocked": 0}

        unknown = disabled - {r.name for r in rules}
        if unknown:
            self.logger.warning("Disabled rules not recognised", extra={"rules": sorted(unknown)})

    def attach(self, bus: TradeEventBus) -> None:
        for event_type in SUBSCRIBED_EVENTS:
            bus.subscribe(event_type, self.on_event)
        self._bus = bus
        self.logger.info("Automation attached", extra={"rules": [r.name for r in self.rules]})

    def detach(self) -> None:
        if self._bus is None:
            return
        for event_type in SUBSCRIBED_EVENTS:
            self._bus.unsubscribe(event_type, self.on_event)
        self._bus = None

    def _first_sighting(self, event_id: str) -> bool:
        with self._seen_lock:
            if event_id in self._seen:
                return False
            self._seen[event_id] = None
            while len(self._seen) > self.dedupe_window:
                self._seen.popitem(last=False)
            return True

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def on_event(self, event: TradeEvent) -> List[AutomationEvent]:
        """Evaluate every rule once for event. Returns the AutomationEvents recorded."""
        self._bump("events_seen")
        if not self._first_sighting(event.event_id):
            self._bump("duplicates")
            self.logger.debug("Duplicate event ignored", extra={
                "event_id": event.event_id, "trade_id": event.trade_id,
            })
            return []

        try:
            return self._run_rules(event)
        except Exception:
            # Infrastructure failure: let a redelivery of this event try again
            with self._seen_lock:
                self._seen.pop(event.event_id, None)
            raise

    def _run_rules(self, event: TradeEvent) -> List[AutomationEvent]:
        recorded = []
        for rule in self.rules:
            if event.caused_by_rule == rule.name:
                continue

            # Fresh snapshot per rule: an earlier rule may have moved the trade
            try:
                trade = self.engine.get_trade(event.trade_id)
            except TradeNotFoundError:
                self.logger.warning("Event for unknown trade", extra={
                    "event_id": event.event_id, "trade_id": event.trade_id,
                })
                return recorded

            if not rule.matches(trade):
                continue

            recorded.append(self._fire(rule, event))
        return recorded

    def _fire(self, rule: AutomationRule, event: TradeEvent) -> AutomationEvent:
        self._bump("fired")
        attempt = self.engine.attempt_transition(
            event.trade_id, rule.target_state, Actor.automation(), rule=rule.name
        )
        automation_event = self.engine.record_automation(AutomationEvent(
            automation_id=f"AUTO-{uuid.uuid4().hex}",
            rule=rule.name,
            trade_id=event.trade_id,
            trigger_event_id=event.event_id,
            trigger_event_type=event.event_type.value,
            target_state=rule.target_state,
            attempt=attempt,
            timestamp=self.engine.clock.now(),
        ))

        extra = {
            "rule": rule.name,
            "trade_id": event.trade_id,
            "trigger_event_id": event.event_id,
            "reason_code": attempt.reason_code.value,
            "required_actions": list(attempt.required_actions),
        }
        if attempt.blocked:
            self._bump("blocked")
            self.logger.warning(
                f"Automation {rule.name} BLOCKED on {event.trade_id}: {attempt.reason_code.value}",
                extra=extra,
            )
        else:
            self._bump("applied")
            self.logger.info(f"Automation {rule.name} applied on {event.trade_id}", extra=extra)
        return automation_event

    def get_stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)
