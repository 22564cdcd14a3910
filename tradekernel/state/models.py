"""
Trade aggregate, actors and the immutable audit records.

Trade objects handed out by the store are snapshots: mutating one has no
effect on persisted state. Only the TransitionEngine writes trades.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .lifecycle import ReasonCode, TradeState


# ============================================================================
# ACTORS
# ============================================================================

class ActorRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    LOGISTICS = "logistics"
    AUTOMATION = "automation"
    OPERATOR = "operator"


AUTOMATION_ACTOR_ID = "automation"


@dataclass(frozen=True)
class Actor:
    """
    Who is asking. actor_id is the company id for buyer/seller/logistics.

    An operator is platform staff: not bound to any company on the trade,
    may fire any edge a party may fire, and never signs settlement.
    """
    role: ActorRole
    actor_id: str

    @classmethod
    def buyer(cls, actor_id: str) -> "Actor":
        return cls(ActorRole.BUYER, actor_id)

    @classmethod
    def seller(cls, actor_id: str) -> "Actor":
        return cls(ActorRole.SELLER, actor_id)

    @classmethod
    def logistics(cls, actor_id: str) -> "Actor":
        return cls(ActorRole.LOGISTICS, actor_id)

    @classmethod
    def automation(cls) -> "Actor":
        return cls(ActorRole.AUTOMATION, AUTOMATION_ACTOR_ID)

    @classmethod
    def operator(cls, actor_id: str) -> "Actor":
        return cls(ActorRole.OPERATOR, actor_id)

    @property
    def is_automation(self) -> bool:
        return self.role == ActorRole.AUTOMATION

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "actor_id": self.actor_id}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "Actor":
        return cls(ActorRole(data["role"]), data["actor_id"])

    def __str__(self) -> str:
        return f"{self.role.value}:{self.actor_id}"


class Decision(str, Enum):
    APPLIED = "APPLIED"
    BLOCKED = "BLOCKED"


# ============================================================================
# TRADE AGGREGATE
# ============================================================================

@dataclass
class Trade:
    """Trade aggregate root."""
    trade_id: str
    buyer_id: str
    seller_id: str
    quantity: Decimal
    unit_price: Decimal
    currency: str
    state: TradeState = TradeState.INQUIRY
    logistics_id: Optional[str] = None
    rfq_id: Optional[str] = None
    quote_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    version: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.state, TradeState):
            self.state = TradeState(self.state)
        if self.quantity < 0:
            raise ValueError(f"quantity must be non-negative: {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"unit_price must be non-negative: {self.unit_price}")

    @property
    def contract_value(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def company_ids(self) -> Tuple[str, ...]:
        ids = [self.buyer_id, self.seller_id]
        if self.logistics_id:
            ids.append(self.logistics_id)
        return tuple(ids)

    def party_id(self, role: ActorRole) -> Optional[str]:
        """Company bound to role on this trade (None for automation and operators)."""
        if role == ActorRole.BUYER:
            return self.buyer_id
        if role == ActorRole.SELLER:
            return self.seller_id
        if role == ActorRole.LOGISTICS:
            return self.logistics_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "state": self.state.value,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "logistics_id": self.logistics_id,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "currency": self.currency,
            "contract_value": str(self.contract_value),
            "rfq_id": self.rfq_id,
            "quote_id": self.quote_id,
            "context": dict(self.context),
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ============================================================================
# AUDIT RECORDS
# ============================================================================

@dataclass(frozen=True)
class TransitionAttempt:
    """
    Immutable record of one transition attempt, applied or blocked.

    attempted_to_state is kept as the raw requested string so attempts at
    undeclared states are recorded verbatim. sequence and record_hash are
    assigned by the audit log on append.
    """
    attempt_id: str
    trade_id: str
    from_state: TradeState
    attempted_to_state: str
    decision: Decision
    reason_code: ReasonCode
    required_actions: Tuple[str, ...]
    actor: Actor
    timestamp: datetime
    message: str = ""
    rule: Optional[str] = None
    noop: bool = False
    sequence: Optional[int] = None
    record_hash: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.decision == Decision.APPLIED

    @property
    def blocked(self) -> bool:
        return self.decision == Decision.BLOCKED

    @property
    def to_state(self) -> Optional[TradeState]:
        return TradeState.parse(self.attempted_to_state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_type": "transition_attempt",
            "attempt_id": self.attempt_id,
            "trade_id": self.trade_id,
            "from_state": self.from_state.value,
            "attempted_to_state": self.attempted_to_state,
            "decision": self.decision.value,
            "reason_code": self.reason_code.value,
            "required_actions": list(self.required_actions),
            "actor": self.actor.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "rule": self.rule,
            "noop": self.noop,
            "sequence": self.sequence,
            "record_hash": self.record_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionAttempt":
        return cls(
            attempt_id=data["attempt_id"],
            trade_id=data["trade_id"],
            from_state=TradeState(data["from_state"]),
            attempted_to_state=data["attempted_to_state"],
            decision=Decision(data["decision"]),
            reason_code=ReasonCode(data["reason_code"]),
            required_actions=tuple(data.get("required_actions") or ()),
            actor=Actor.from_dict(data["actor"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            message=data.get("message") or "",
            rule=data.get("rule"),
            noop=bool(data.get("noop", False)),
            sequence=data.get("sequence"),
            record_hash=data.get("record_hash"),
        )


@dataclass(frozen=True)
class AutomationEvent:
    """Immutable record of an automation rule firing and what it produced."""
    automation_id: str
    rule: str
    trade_id: str
    trigger_event_id: str
    trigger_event_type: str
    target_state: TradeState
    attempt: TransitionAttempt
    timestamp: datetime
    sequence: Optional[int] = None
    record_hash: Optional[str] = None

    @property
    def decision(self) -> Decision:
        return self.attempt.decision

    @property
    def reason_code(self) -> ReasonCode:
        return self.attempt.reason_code

    @property
    def required_actions(self) -> Tuple[str, ...]:
        return self.attempt.required_actions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_type": "automation_event",
            "automation_id": self.automation_id,
            "rule": self.rule,
            "trade_id": self.trade_id,
            "trigger_event_id": self.trigger_event_id,
            "trigger_event_type": self.trigger_event_type,
            "target_state": self.target_state.value,
            "decision": self.attempt.decision.value,
            "reason_code": self.attempt.reason_code.value,
            "required_actions": list(self.attempt.required_actions),
            "attempt": self.attempt.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
            "record_hash": self.record_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutomationEvent":
        return cls(
            automation_id=data["automation_id"],
            rule=data["rule"],
            trade_id=data["trade_id"],
            trigger_event_id=data["trigger_event_id"],
            trigger_event_type=data["trigger_event_type"],
            target_state=TradeState(data["target_state"]),
            attempt=TransitionAttempt.from_dict(data["attempt"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            sequence=data.get("sequence"),
            record_hash=data.get("record_hash"),
        )


@dataclass(frozen=True)
class SignatureRecord:
    """
    Immutable record of one party signing off settlement.

    Signatures are audited on the same hash chain as transition attempts,
    so a dispute can show who agreed to release escrow and when.
    """
    signature_id: str
    trade_id: str
    actor: Actor
    trade_state: TradeState
    timestamp: datetime
    sequence: Optional[int] = None
    record_hash: Optional[str] = None

    @property
    def decision(self) -> Decision:
        return Decision.APPLIED

    @property
    def reason_code(self) -> ReasonCode:
        return ReasonCode.SIGNED

    @property
    def required_actions(self) -> Tuple[str, ...]:
        return ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_type": "signature",
            "signature_id": self.signature_id,
            "trade_id": self.trade_id,
            "actor": self.actor.to_dict(),
            "trade_state": self.trade_state.value,
            "decision": self.decision.value,
            "reason_code": self.reason_code.value,
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
            "record_hash": self.record_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignatureRecord":
        return cls(
            signature_id=data["signature_id"],
            trade_id=data["trade_id"],
            actor=Actor.from_dict(data["actor"]),
            trade_state=TradeState(data["trade_state"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            sequence=data.get("sequence"),
            record_hash=data.get("record_hash"),
        )
