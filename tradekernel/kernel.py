"""
TradeKernel: wires the kernel components together and exposes the
operations collaborators call.

BUILD ORDER:
1. Clock (no dependencies)
2. TradeStore
3. AuditJournal (optional) + AuditLog
4. TradeEventBus, TradeLockManager, GuardEvaluator
5. TransitionEngine
6. AutomationTriggerBus (subscribed to the event bus)
7. EventStreamReader
8. Audit chain verification (config.audit.verify_on_startup)
"""

from typing import Any, Dict, List, Optional

from tradekernel.audit import AuditJournal, AuditLog, AuditRecord, EventStreamReader
from tradekernel.automation import AutomationTriggerBus
from tradekernel.config import KernelConfig
from tradekernel.events import TradeEventBus
from tradekernel.logging import get_logger, LogStream
from tradekernel.state import (
    Actor,
    GuardEvaluator,
    GuardVerdict,
    SignatureRecord,
    Trade,
    TradeLockManager,
    TradeState,
    TradeStore,
    TransitionAttempt,
)
from tradekernel.state.engine import TransitionEngine
from tradekernel.time import Clock, RealTimeClock


class TradeKernel:
    """
    Facade over the trade lifecycle kernel.

    USAGE:
        kernel = TradeKernel.from_config(load_config())
        kernel.create_trade("T-1", "buyer-co", "seller-co", 100, "12.50")
        attempt = kernel.attempt_transition("T-1", "rfq_open", Actor.buyer("buyer-co"))
        feed = kernel.read_recent("buyer-co", limit=20)
    """

    def __init__(self, config: Optional[KernelConfig] = None, clock: Optional[Clock] = None):
        self.config = config or KernelConfig()
        self.logger = get_logger(LogStream.SYSTEM)

        self.clock = clock or RealTimeClock()
        self.store = TradeStore(
            self.config.store.db_path, busy_timeout_ms=self.config.store.busy_timeout_ms
        )

        self.journal: Optional[AuditJournal] = None
        if self.config.audit.journal_path is not None:
            self.journal = AuditJournal(self.config.audit.journal_path)
        self.audit_log = AuditLog(self.store, journal=self.journal)

        self.event_bus = TradeEventBus()
        self.locks = TradeLockManager(timeout_seconds=self.config.locks.timeout_seconds)
        self.evaluator = GuardEvaluator()

        self.engine = TransitionEngine(
            store=self.store,
            audit_log=self.audit_log,
            bus=self.event_bus,
            locks=self.locks,
            evaluator=self.evaluator,
            clock=self.clock,
        )

        self.automation: Optional[AutomationTriggerBus] = None
        if self.config.automation.enabled:
            self.automation = AutomationTriggerBus(
                self.engine,
                disabled_rules=self.config.automation.disabled_rules,
                dedupe_window=self.config.automation.dedupe_window,
            )
            self.automation.attach(self.event_bus)

        self.stream = EventStreamReader(self.store, self.config.stream)

        if self.config.audit.verify_on_startup:
            try:
                self.audit_log.verify_chain()
            except Exception:
                self.logger.critical("Audit chain verification failed on startup", exc_info=True)
                self.close()
                raise

        self.logger.info("TradeKernel initialized", extra={
            "db_path": str(self.config.store.db_path),
            "automation": self.automation is not None,
            "journal": str(self.config.audit.journal_path) if self.journal else None,
        })

    @classmethod
    def from_config(cls, config: KernelConfig, clock: Optional[Clock] = None) -> "TradeKernel":
        config.ensure_directories()
        return cls(config, clock=clock)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def create_trade(self, trade_id: str, buyer_id: str, seller_id: str,
                     quantity, unit_price, currency: str = "USD", **kwargs) -> Trade:
        return self.engine.create_trade(
            trade_id, buyer_id, seller_id, quantity, unit_price, currency, **kwargs
        )

    def attempt_transition(self, trade_id: str, target_state: Any, actor: Actor) -> TransitionAttempt:
        return self.engine.attempt_transition(trade_id, target_state, actor)

    def update_context(self, trade_id: str, updates: Dict[str, Any], source: str = "system") -> Trade:
        return self.engine.update_context(trade_id, updates, source)

    def record_signature(self, trade_id: str, actor: Actor) -> SignatureRecord:
        return self.engine.record_signature(trade_id, actor)

    def republish_pending(self, limit: int = 1000) -> int:
        return self.engine.republish_pending(limit=limit)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_trade(self, trade_id: str) -> Trade:
        return self.engine.get_trade(trade_id)

    def list_trades(self, company_id: Optional[str] = None,
                    state: Optional[TradeState] = None) -> List[Trade]:
        return self.store.list_trades(company_id=company_id, state=state)

    def preview(self, trade_id: str, target_state: Any, actor: Actor) -> GuardVerdict:
        return self.engine.preview(trade_id, target_state, actor)

    def next_actions(self, trade_id: str, actor: Actor) -> List[GuardVerdict]:
        return self.engine.next_actions(trade_id, actor)

    def consensus_status(self, trade_id: str) -> Dict[str, Any]:
        return self.engine.consensus_status(trade_id)

    def read_recent(self, key: str, limit: Optional[int] = None) -> List[AuditRecord]:
        return self.stream.read_recent(key, limit)

    def read_since(self, key: str, after_sequence: int = 0,
                   limit: Optional[int] = None) -> List[AuditRecord]:
        return self.stream.read_since(key, after_sequence, limit)

    def history(self, trade_id: str) -> List[AuditRecord]:
        return self.audit_log.history(trade_id)

    def verify_audit_chain(self) -> int:
        return self.audit_log.verify_chain()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self.automation is not None:
            self.automation.detach()
        if self.journal is not None:
            self.journal.close()
        self.store.close()
        self.logger.info("TradeKernel closed")

    def __enter__(self) -> "TradeKernel":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
