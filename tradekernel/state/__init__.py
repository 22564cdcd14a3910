"""
Trade state: lifecycle table, guards, locks and persistence.

TransitionEngine lives in tradekernel.state.engine and is imported from
there (it depends on tradekernel.audit, which depends on this package).
"""

from .lifecycle import (
    TradeState,
    Initiator,
    ReasonCode,
    RequiredAction,
    TransitionEdge,
    ALL_EDGES,
    TERMINAL_STATES,
    TRANSITION_TABLE,
    get_edge,
    edges_from,
    is_terminal,
    valid_targets,
)
from .models import (
    Actor,
    ActorRole,
    AutomationEvent,
    Decision,
    SignatureRecord,
    Trade,
    TransitionAttempt,
)
from .guards import GuardEvaluator, GuardVerdict, Verdict
from .locks import TradeLockManager
from .trade_store import TradeStore, StoreTransaction

__all__ = [
    "TradeState",
    "Initiator",
    "ReasonCode",
    "RequiredAction",
    "TransitionEdge",
    "ALL_EDGES",
    "TERMINAL_STATES",
    "TRANSITION_TABLE",
    "get_edge",
    "edges_from",
    "is_terminal",
    "valid_targets",
    "Actor",
    "ActorRole",
    "AutomationEvent",
    "Decision",
    "SignatureRecord",
    "Trade",
    "TransitionAttempt",
    "GuardEvaluator",
    "GuardVerdict",
    "Verdict",
    "TradeLockManager",
    "TradeStore",
    "StoreTransaction",
]
