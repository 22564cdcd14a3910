"""
Transition engine: the only writer of trade state.

FLOW (attempt_transition):
1. Acquire the per-trade lock (LockTimeoutError on timeout)
2. BEGIN IMMEDIATE, load the trade (TradeNotFoundError if unknown)
3. Already in target state -> APPLIED no-op attempt, no event
                             (BLOCKED if the actor is not a party on the trade)
4. Guard BLOCK            -> BLOCKED attempt, state unchanged
5. Guard PASS             -> state update (version checked) + APPLIED attempt
                             + outbox event, one commit
6. Release the lock, then publish committed events and mark them published

Domain rejections come back as BLOCKED attempts. Infrastructure failures
are raised and are safe to retry: a retried call that already applied
lands on step 3.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tradekernel.audit.log import AuditLog
from tradekernel.events import EventType, TradeEvent, TradeEventBus
from tradekernel.exceptions import AuditLogError, SignatureRejectedError, TradeNotFoundError
from tradekernel.logging import get_logger, LogContext, LogStream, log_performance
from tradekernel.time import Clock, RealTimeClock

from .guards import GuardEvaluator, GuardVerdict, Verdict, party_refusal, signer_refusal
from .lifecycle import SIGNATURES_KEY, ReasonCode, TradeState, missing_sign_offs, signatures_of
from .locks import TradeLockManager
from .models import Actor, AutomationEvent, Decision, SignatureRecord, Trade, TransitionAttempt
from .trade_store import TradeStore


def _target_str(target_state: Any) -> str:
    return target_state.value if isinstance(target_state, TradeState) else str(target_state)


class TransitionEngine:
    """
    Applies or blocks transitions, one trade at a time.

    USAGE:
        engine = TransitionEngine(store, AuditLog(store), TradeEventBus())
        attempt = engine.attempt_transition("T-1", TradeState.RFQ_OPEN, Actor.buyer("acme"))
        if attempt.blocked:
            show(attempt.required_actions)
    """

    def __init__(
        self,
        store: TradeStore,
        audit_log: AuditLog,
        bus: TradeEventBus,
        locks: Optional[TradeLockManager] = None,
        evaluator: Optional[GuardEvaluator] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.audit_log = audit_log
        self.bus = bus
        self.locks = locks or TradeLockManager()
        self.evaluator = evaluator or GuardEvaluator()
        self.clock = clock or RealTimeClock()
        self.logger = get_logger(LogStream.TRANSITIONS)

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def create_trade(
        self,
        trade_id: str,
        buyer_id: str,
        seller_id: str,
        quantity: Decimal,
        unit_price: Decimal,
        currency: str = "USD",
        *,
        logistics_id: Optional[str] = None,
        rfq_id: Optional[str] = None,
        quote_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Trade:
        """
        Insert a new trade in INQUIRY.

        Raises:
            TradeAlreadyExistsError: trade_id taken
        """
        now = self.clock.now()
        trade = Trade(
            trade_id=trade_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            quantity=Decimal(str(quantity)),
            unit_price=Decimal(str(unit_price)),
            currency=currency,
            logistics_id=logistics_id,
            rfq_id=rfq_id,
            quote_id=quote_id,
            context=dict(context or {}),
            created_at=now,
            updated_at=now,
        )
        with self.store.transaction() as tx:
            tx.insert_trade(trade)

        self.logger.info(f"Trade created: {trade_id}", extra={
            "trade_id": trade_id,
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "contract_value": str(trade.contract_value),
        })
        return trade

    def get_trade(self, trade_id: str) -> Trade:
        trade = self.store.get_trade(trade_id)
        if trade is None:
            raise TradeNotFoundError(trade_id)
        return trade

    def update_context(
        self, trade_id: str, updates: Dict[str, Any], source: str = "system"
    ) -> Trade:
        """
        Merge signal fields into trade.context and emit context_updated.

        Signal sources (escrow, compliance, document uploads) write here;
        the kernel never computes these values itself. Settlement
        signatures are written by record_signature only.
        """
        if not isinstance(updates, dict):
            raise TypeError(f"updates must be a dict, got {type(updates).__name__}")
        if not updates:
            raise ValueError("updates must not be empty")
        if SIGNATURES_KEY in updates:
            raise ValueError(f"{SIGNATURES_KEY!r} is written by record_signature, not update_context")

        with LogContext(trade_id):
            with self.locks.hold(trade_id):
                now = self.clock.now()
                with self.store.transaction() as tx:
                    trade = tx.get_trade(trade_id)
                    if trade is None:
                        raise TradeNotFoundError(trade_id)
                    event = self._write_context(tx, trade, updates, source, now)

            self.logger.info(f"Context updated on {trade_id}", extra={
                "trade_id": trade_id,
                "source": source,
                "keys": sorted(updates),
            })
            self._publish([event])
        return trade

    @staticmethod
    def _write_context(tx, trade: Trade, updates: Dict[str, Any], source: str, now) -> TradeEvent:
        """Merge updates into trade (in tx and on the snapshot) and queue context_updated."""
        merged = {**trade.context, **updates}
        trade.version = tx.update_trade(
            trade.trade_id, expected_version=trade.version, updated_at=now, context=merged
        )
        tx.insert_context_update(trade.trade_id, updates, source, now)
        event = TradeEvent(
            event_type=EventType.CONTEXT_UPDATED,
            trade_id=trade.trade_id,
            payload={"updates": updates, "source": source, "state": trade.state.value},
            timestamp=now,
        )
        tx.enqueue_event(event)
        trade.context = merged
        trade.updated_at = now
        return event

    def record_signature(self, trade_id: str, actor: Actor) -> SignatureRecord:
        """
        Record actor's settlement sign-off on trade_id.

        The signature is appended to the audit chain and written to
        context["signatures"] under the actor's role, which emits
        context_updated so automation can settle once the last party signs.
        Signing twice appends a second record but changes nothing else.

        Raises:
            TradeNotFoundError, SignatureRejectedError (actor is not a party
            on the trade, or the trade is already closed)
        """
        with LogContext(trade_id):
            with self.locks.hold(trade_id):
                now = self.clock.now()
                events: List[TradeEvent] = []
                with self.store.transaction() as tx:
                    trade = tx.get_trade(trade_id)
                    if trade is None:
                        raise TradeNotFoundError(trade_id)
                    refusal = signer_refusal(trade, actor)
                    if refusal is not None:
                        raise SignatureRejectedError(trade_id, refusal)

                    record = self.audit_log.append(tx, SignatureRecord(
                        signature_id=f"SIG-{uuid.uuid4().hex}",
                        trade_id=trade_id,
                        actor=actor,
                        trade_state=trade.state,
                        timestamp=now,
                    ))

                    signatures = signatures_of(trade.context)
                    if signatures.get(actor.role.value) != actor.actor_id:
                        signatures[actor.role.value] = actor.actor_id
                        events.append(self._write_context(
                            tx, trade, {SIGNATURES_KEY: signatures}, f"signature:{actor.role.value}", now
                        ))

            self.logger.info(f"Settlement signed by {actor}", extra={
                "trade_id": trade_id,
                "actor": str(actor),
                "sequence": record.sequence,
                "missing": list(missing_sign_offs(trade)),
            })
            self._mirror([record])
            self._publish(events)
        return record

    def consensus_status(self, trade_id: str) -> Dict[str, Any]:
        """Who has signed off settlement of trade_id and who is still missing."""
        trade = self.get_trade(trade_id)
        missing = missing_sign_offs(trade)
        return {
            "trade_id": trade_id,
            "signatures": signatures_of(trade.context),
            "missing": list(missing),
            "consensus_reached": not missing,
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @log_performance(LogStream.PERFORMANCE, slow_ms=250)
    def attempt_transition(
        self,
        trade_id: str,
        target_state: Any,
        actor: Actor,
        *,
        rule: Optional[str] = None,
    ) -> TransitionAttempt:
        """
        Attempt to move trade_id to target_state on behalf of actor.

        Args:
            target_state: TradeState or its string value; undeclared values
                are recorded verbatim and blocked as INVALID_EDGE
            rule: automation rule name when fired by the trigger bus

        Returns:
            The persisted TransitionAttempt (APPLIED or BLOCKED)

        Raises:
            TradeNotFoundError, LockTimeoutError, PersistenceError
        """
        with LogContext(trade_id):
            with self.locks.hold(trade_id):
                attempt, events = self._attempt_locked(trade_id, target_state, actor, rule)

            self._log_attempt(attempt)
            self._mirror([attempt])
            self._publish(events)
        return attempt

    def _attempt_locked(
        self, trade_id: str, target_state: Any, actor: Actor, rule: Optional[str]
    ) -> Tuple[TransitionAttempt, List[TradeEvent]]:
        now = self.clock.now()
        requested = _target_str(target_state)

        with self.store.transaction() as tx:
            trade = tx.get_trade(trade_id)
            if trade is None:
                raise TradeNotFoundError(trade_id)

            target = TradeState.parse(target_state)
            if target is not None and trade.state == target:
                refusal = party_refusal(trade, actor)
                if refusal is not None:
                    attempt = self._new_attempt(
                        trade, requested, actor, now, Decision.BLOCKED,
                        ReasonCode.UNAUTHORIZED_ACTOR, (), refusal, rule,
                    )
                    return self.audit_log.append(tx, attempt), []
                attempt = self._new_attempt(
                    trade, requested, actor, now, Decision.APPLIED,
                    ReasonCode.NOOP_ALREADY_IN_STATE, (),
                    f"Trade already in {target.value}", rule, noop=True,
                )
                return self.audit_log.append(tx, attempt), []

            verdict = self.evaluator.evaluate(trade, target_state, actor)
            if not verdict.passed:
                attempt = self._new_attempt(
                    trade, requested, actor, now, Decision.BLOCKED,
                    verdict.reason_code, verdict.required_actions, verdict.message, rule,
                )
                return self.audit_log.append(tx, attempt), []

            tx.update_trade(trade_id, expected_version=trade.version, updated_at=now, state=target)
            attempt = self._new_attempt(
                trade, requested, actor, now, Decision.APPLIED, ReasonCode.OK, (),
                f"{trade.state.value} -> {target.value}", rule,
            )
            attempt = self.audit_log.append(tx, attempt)

            event = TradeEvent(
                event_type=EventType.STATE_TRANSITION,
                trade_id=trade_id,
                payload={
                    "from_state": trade.state.value,
                    "to_state": target.value,
                    "attempt_id": attempt.attempt_id,
                    "sequence": attempt.sequence,
                    "actor": actor.to_dict(),
                },
                caused_by_rule=rule,
                timestamp=now,
            )
            tx.enqueue_event(event)
            return attempt, [event]

    @staticmethod
    def _new_attempt(
        trade: Trade,
        requested: str,
        actor: Actor,
        now,
        decision: Decision,
        reason_code: ReasonCode,
        required_actions: Iterable[str],
        message: str,
        rule: Optional[str],
        noop: bool = False,
    ) -> TransitionAttempt:
        return TransitionAttempt(
            attempt_id=f"ATT-{uuid.uuid4().hex}",
            trade_id=trade.trade_id,
            from_state=trade.state,
            attempted_to_state=requested,
            decision=decision,
            reason_code=reason_code,
            required_actions=tuple(required_actions),
            actor=actor,
            timestamp=now,
            message=message,
            rule=rule,
            noop=noop,
        )

    def _log_attempt(self, attempt: TransitionAttempt) -> None:
        extra = {
            "trade_id": attempt.trade_id,
            "from_state": attempt.from_state.value,
            "to_state": attempt.attempted_to_state,
            "actor": str(attempt.actor),
            "reason_code": attempt.reason_code.value,
            "required_actions": list(attempt.required_actions),
            "sequence": attempt.sequence,
            "rule": attempt.rule,
        }
        if attempt.blocked:
            self.logger.info(
                f"Transition BLOCKED: {attempt.from_state.value} -> {attempt.attempted_to_state} "
                f"({attempt.reason_code.value})",
                extra=extra,
            )
        elif attempt.noop:
            self.logger.debug(f"Transition no-op: already {attempt.attempted_to_state}", extra=extra)
        else:
            self.logger.info(
                f"Transition APPLIED: {attempt.from_state.value} -> {attempt.attempted_to_state}",
                extra=extra,
            )

    # ------------------------------------------------------------------
    # Dry runs
    # ------------------------------------------------------------------

    def preview(self, trade_id: str, target_state: Any, actor: Actor) -> GuardVerdict:
        """What attempt_transition would decide right now. Writes nothing."""
        trade = self.get_trade(trade_id)
        target = TradeState.parse(target_state)
        if target is not None and trade.state == target:
            refusal = party_refusal(trade, actor)
            if refusal is not None:
                return GuardVerdict(
                    Verdict.BLOCK, ReasonCode.UNAUTHORIZED_ACTOR, (), target.value, refusal
                )
            return GuardVerdict(
                Verdict.PASS, ReasonCode.NOOP_ALREADY_IN_STATE, (), target.value,
                f"Trade already in {target.value}",
            )
        return self.evaluator.evaluate(trade, target_state, actor)

    def next_actions(self, trade_id: str, actor: Actor) -> List[GuardVerdict]:
        """Verdict for every edge leaving the trade's current state."""
        return self.evaluator.next_actions(self.get_trade(trade_id), actor)

    # ------------------------------------------------------------------
    # Automation records
    # ------------------------------------------------------------------

    def record_automation(self, event: AutomationEvent) -> AutomationEvent:
        """Append an AutomationEvent to the audit log in its own commit."""
        with self.store.transaction() as tx:
            stored = self.audit_log.append(tx, event)
        self._mirror([stored])
        return stored

    def _mirror(self, records) -> None:
        # The store is the record of truth; a journal failure must not hide a commit
        try:
            self.audit_log.mirror(records)
        except AuditLogError:
            self.logger.error("Audit journal mirror failed; committed records are in the store", extra={
                "sequences": [r.sequence for r in records],
            }, exc_info=True)

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _mark_published(self, event: TradeEvent) -> None:
        self.store.mark_published([event.event_id])

    def _publish(self, events: Iterable[TradeEvent]) -> None:
        for event in events:
            self.bus.publish(event, on_dispatched=self._mark_published)

    def republish_pending(self, limit: int = 1000) -> int:
        """
        Redeliver committed but unpublished outbox events (crash recovery).

        Consumers dedupe on event_id, so redelivering an event that was in
        fact dispatched before the crash is harmless.
        """
        events = self.store.pending_events(limit=limit)
        if events:
            self.logger.warning(f"Republishing {len(events)} pending events", extra={
                "count": len(events),
            })
        self._publish(events)
        return len(events)
