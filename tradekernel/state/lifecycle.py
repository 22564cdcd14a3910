"""
Trade lifecycle: states, required actions, edge guards and the transition table.

CRITICAL RULES:
1. All transitions must be pre-declared in TRANSITION_TABLE
2. Terminal states (completed, cancelled) have no outgoing edges
3. No back-edge to an earlier state except through DISPUTED
4. DISPUTED exits only to COMPLETED or CANCELLED
5. Edge guards only READ the trade; they never mutate context

Everything in this module is static declaration plus pure predicates.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


# ============================================================================
# TRADE STATE ENUM
# ============================================================================

class TradeState(str, Enum):
    """Canonical trade lifecycle states."""
    INQUIRY = "inquiry"
    RFQ_OPEN = "rfq_open"
    QUOTE_RECEIVED = "quote_received"
    NEGOTIATING = "negotiating"
    CONTRACTED = "contracted"
    ESCROW_FUNDED = "escrow_funded"
    PRODUCTION = "production"
    QUALITY_CHECK = "quality_check"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    CUSTOMS_CLEARANCE = "customs_clearance"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> Optional["TradeState"]:
        """Return the member for value, or None if it is not a declared state."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


TERMINAL_STATES = frozenset({TradeState.COMPLETED, TradeState.CANCELLED})

# Forward order used to reject back-edges when the table is built
STATE_ORDER: Tuple[TradeState, ...] = (
    TradeState.INQUIRY,
    TradeState.RFQ_OPEN,
    TradeState.QUOTE_RECEIVED,
    TradeState.NEGOTIATING,
    TradeState.CONTRACTED,
    TradeState.ESCROW_FUNDED,
    TradeState.PRODUCTION,
    TradeState.QUALITY_CHECK,
    TradeState.SHIPPED,
    TradeState.IN_TRANSIT,
    TradeState.CUSTOMS_CLEARANCE,
    TradeState.DELIVERED,
    TradeState.COMPLETED,
)


class Initiator(str, Enum):
    """Who may fire an edge."""
    BUYER = "buyer"
    SELLER = "seller"
    LOGISTICS = "logistics"
    AUTOMATION = "automation"
    ANY = "any"


class ReasonCode(str, Enum):
    """Machine-readable outcome codes carried on every attempt."""
    OK = "OK"
    NOOP_ALREADY_IN_STATE = "NOOP_ALREADY_IN_STATE"
    INVALID_EDGE = "INVALID_EDGE"
    UNAUTHORIZED_ACTOR = "UNAUTHORIZED_ACTOR"
    MISSING_REQUIRED_ACTIONS = "MISSING_REQUIRED_ACTIONS"
    ESCROW_INSUFFICIENT = "ESCROW_INSUFFICIENT"
    COMPLIANCE_HOLD = "COMPLIANCE_HOLD"
    DISPUTE_RESOLUTION_MISMATCH = "DISPUTE_RESOLUTION_MISMATCH"
    CONSENSUS_PENDING = "CONSENSUS_PENDING"
    SIGNED = "SIGNED"


# ============================================================================
# REQUIRED ACTIONS
# ============================================================================

class RequiredAction:
    """Symbolic precondition tokens surfaced to the UI as 'what to do next'."""
    SUBMIT_QUOTE = "submit_quote"
    ACCEPT_QUOTE = "accept_quote"
    SIGN_CONTRACT = "sign_contract"
    FUND_ESCROW = "fund_escrow"
    ADD_HS_CODE = "add_hs_code"
    PASS_QUALITY_CHECK = "pass_quality_check"
    UPLOAD_COMPLIANCE_DOCS = "upload_compliance_docs"
    CONFIRM_PICKUP = "confirm_pickup"
    UPLOAD_CUSTOMS_DOCS = "upload_customs_docs"
    CONFIRM_DELIVERY = "confirm_delivery"
    ACCEPT_DELIVERY = "accept_delivery"
    FILE_DISPUTE = "file_dispute"
    RESOLVE_DISPUTE = "resolve_dispute"
    # Remediation only; never declared on an edge
    RESOLVE_COMPLIANCE_CASE = "resolve_compliance_case"
    BUYER_SIGN_OFF = "buyer_sign_off"
    SELLER_SIGN_OFF = "seller_sign_off"
    LOGISTICS_SIGN_OFF = "logistics_sign_off"


_TRUE_STRINGS = {"1", "true", "yes", "y", "on"}


def is_truthy(value: Any) -> bool:
    """Context flags arrive from JSON writers; accept 'true'/'1' strings too."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _flag(key: str) -> Callable[[Mapping[str, Any]], bool]:
    def check(context: Mapping[str, Any]) -> bool:
        return is_truthy(context.get(key))
    return check


def _present(key: str) -> Callable[[Mapping[str, Any]], bool]:
    def check(context: Mapping[str, Any]) -> bool:
        value = context.get(key)
        if value is None:
            return False
        return bool(str(value).strip())
    return check


# action -> predicate over trade.context
ACTION_PREDICATES: Dict[str, Callable[[Mapping[str, Any]], bool]] = {
    RequiredAction.SUBMIT_QUOTE: _flag("quote_submitted"),
    RequiredAction.ACCEPT_QUOTE: _flag("quote_accepted"),
    RequiredAction.SIGN_CONTRACT: _flag("contract_signed"),
    RequiredAction.FUND_ESCROW: _flag("escrow_funded"),
    RequiredAction.ADD_HS_CODE: _present("hs_code"),
    RequiredAction.PASS_QUALITY_CHECK: _flag("quality_check_passed"),
    RequiredAction.UPLOAD_COMPLIANCE_DOCS: _flag("compliance_docs_uploaded"),
    RequiredAction.CONFIRM_PICKUP: _flag("carrier_pickup_confirmed"),
    RequiredAction.UPLOAD_CUSTOMS_DOCS: _flag("customs_docs_uploaded"),
    RequiredAction.CONFIRM_DELIVERY: _flag("delivery_confirmed"),
    RequiredAction.ACCEPT_DELIVERY: _flag("delivery_accepted"),
    RequiredAction.FILE_DISPUTE: _flag("dispute_filed"),
    RequiredAction.RESOLVE_DISPUTE: _present("dispute_resolution"),
}


def is_action_satisfied(action: str, context: Mapping[str, Any]) -> bool:
    predicate = ACTION_PREDICATES.get(action)
    if predicate is None:
        raise KeyError(f"Unknown required action: {action}")
    return predicate(context)


# ============================================================================
# EDGE GUARDS
# ============================================================================

@dataclass(frozen=True)
class GuardFailure:
    """Returned by an edge guard that blocks. Always carries remediation actions."""
    reason_code: ReasonCode
    required_actions: Tuple[str, ...]
    message: str


EdgeGuard = Callable[[Any], Optional[GuardFailure]]

_BLOCKING_COMPLIANCE_VERDICTS = {"hold", "rejected", "error"}


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Finite Decimal for value, or None (NaN and Infinity count as unparseable)."""
    if value is None:
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return d


def escrow_sufficient(trade) -> Optional[GuardFailure]:
    """Escrow balance must cover the contract value."""
    balance = _to_decimal(trade.context.get("escrow_balance"))
    required = trade.contract_value
    if balance is None or balance < required:
        return GuardFailure(
            reason_code=ReasonCode.ESCROW_INSUFFICIENT,
            required_actions=(RequiredAction.FUND_ESCROW,),
            message=f"Escrow balance {balance if balance is not None else 0} "
                    f"below contract value {required} {trade.currency}",
        )
    return None


def compliance_clear(trade) -> Optional[GuardFailure]:
    """No open compliance case on the trade."""
    verdict = str(trade.context.get("compliance_verdict") or "").strip().lower()
    if verdict in _BLOCKING_COMPLIANCE_VERDICTS or is_truthy(trade.context.get("compliance_hold")):
        return GuardFailure(
            reason_code=ReasonCode.COMPLIANCE_HOLD,
            required_actions=(RequiredAction.RESOLVE_COMPLIANCE_CASE,),
            message=f"Compliance hold (verdict={verdict or 'hold'})",
        )
    return None


def _dispute_resolution_is(expected: str) -> EdgeGuard:
    def guard(trade) -> Optional[GuardFailure]:
        resolution = str(trade.context.get("dispute_resolution") or "").strip().lower()
        if resolution != expected:
            return GuardFailure(
                reason_code=ReasonCode.DISPUTE_RESOLUTION_MISMATCH,
                required_actions=(RequiredAction.RESOLVE_DISPUTE,),
                message=f"Dispute resolution is {resolution or 'unset'!r}, edge requires {expected!r}",
            )
        return None
    guard.__name__ = f"dispute_{expected}"
    return guard


dispute_released = _dispute_resolution_is("release")
dispute_refunded = _dispute_resolution_is("refund")


# Settlement sign-offs live in context["signatures"] as {role: company_id}
SIGNATURES_KEY = "signatures"
SIGNING_ROLES = ("buyer", "seller", "logistics")


def settlement_signers(trade) -> Tuple[Tuple[str, str], ...]:
    """(role, company) pairs that must sign before escrow is released."""
    signers = [("buyer", trade.buyer_id), ("seller", trade.seller_id)]
    if trade.logistics_id:
        signers.append(("logistics", trade.logistics_id))
    return tuple(signers)


def signatures_of(context: Mapping[str, Any]) -> Dict[str, str]:
    signatures = context.get(SIGNATURES_KEY)
    return dict(signatures) if isinstance(signatures, Mapping) else {}


def missing_sign_offs(trade) -> Tuple[str, ...]:
    """Sign-off tokens still outstanding, buyer first."""
    signed = signatures_of(trade.context)
    return tuple(
        f"{role}_sign_off" for role, company in settlement_signers(trade)
        if signed.get(role) != company
    )


def consensus_reached(trade) -> Optional[GuardFailure]:
    """Every party bound to the trade has signed off settlement."""
    missing = missing_sign_offs(trade)
    if missing:
        return GuardFailure(
            reason_code=ReasonCode.CONSENSUS_PENDING,
            required_actions=missing,
            message=f"Awaiting sign-off: {', '.join(missing)}",
        )
    return None


def signed_release(trade) -> Optional[GuardFailure]:
    """Dispute resolved as release, then the same sign-off as a normal settlement."""
    return dispute_released(trade) or consensus_reached(trade)


# ============================================================================
# TRANSITION DEFINITION
# ============================================================================

@dataclass(frozen=True)
class TransitionEdge:
    """Immutable definition of a valid state transition."""
    from_state: TradeState
    to_state: TradeState
    initiator: Initiator
    required_actions: Tuple[str, ...] = ()
    guard: Optional[EdgeGuard] = field(default=None, compare=False)
    description: str = ""

    @property
    def key(self) -> Tuple[TradeState, TradeState]:
        return (self.from_state, self.to_state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "initiator": self.initiator.value,
            "required_actions": list(self.required_actions),
            "guard": self.guard.__name__ if self.guard else None,
            "description": self.description,
        }


A = RequiredAction
S = TradeState

_FORWARD_EDGES: List[TransitionEdge] = [
    TransitionEdge(S.INQUIRY, S.RFQ_OPEN, Initiator.BUYER,
                   description="Buyer publishes RFQ"),
    TransitionEdge(S.RFQ_OPEN, S.QUOTE_RECEIVED, Initiator.SELLER, (A.SUBMIT_QUOTE,),
                   description="Seller quotes"),
    TransitionEdge(S.QUOTE_RECEIVED, S.NEGOTIATING, Initiator.ANY,
                   description="Either party opens negotiation"),
    TransitionEdge(S.QUOTE_RECEIVED, S.CONTRACTED, Initiator.BUYER, (A.ACCEPT_QUOTE, A.SIGN_CONTRACT),
                   description="Buyer accepts quote as-is"),
    TransitionEdge(S.NEGOTIATING, S.CONTRACTED, Initiator.BUYER, (A.ACCEPT_QUOTE, A.SIGN_CONTRACT),
                   description="Buyer accepts negotiated terms"),
    TransitionEdge(S.CONTRACTED, S.ESCROW_FUNDED, Initiator.BUYER, (A.FUND_ESCROW,),
                   guard=escrow_sufficient, description="Escrow covers contract value"),
    TransitionEdge(S.ESCROW_FUNDED, S.PRODUCTION, Initiator.SELLER,
                   guard=compliance_clear, description="Seller starts production"),
    TransitionEdge(S.PRODUCTION, S.QUALITY_CHECK, Initiator.SELLER, (A.ADD_HS_CODE,),
                   description="Goods ready for inspection"),
    TransitionEdge(S.QUALITY_CHECK, S.SHIPPED, Initiator.SELLER,
                   (A.PASS_QUALITY_CHECK, A.UPLOAD_COMPLIANCE_DOCS),
                   guard=compliance_clear, description="Seller hands over to carrier"),
    TransitionEdge(S.SHIPPED, S.IN_TRANSIT, Initiator.LOGISTICS, (A.CONFIRM_PICKUP,),
                   description="Carrier confirms pickup"),
    TransitionEdge(S.SHIPPED, S.CUSTOMS_CLEARANCE, Initiator.AUTOMATION,
                   (A.CONFIRM_PICKUP, A.UPLOAD_CUSTOMS_DOCS),
                   guard=compliance_clear, description="Auto-advance once pickup and customs docs are in"),
    TransitionEdge(S.IN_TRANSIT, S.CUSTOMS_CLEARANCE, Initiator.LOGISTICS, (A.UPLOAD_CUSTOMS_DOCS,),
                   guard=compliance_clear, description="Carrier lodges customs entry"),
    TransitionEdge(S.CUSTOMS_CLEARANCE, S.DELIVERED, Initiator.LOGISTICS, (A.CONFIRM_DELIVERY,),
                   guard=compliance_clear, description="Carrier confirms delivery"),
    TransitionEdge(S.DELIVERED, S.COMPLETED, Initiator.ANY, (A.CONFIRM_DELIVERY, A.ACCEPT_DELIVERY),
                   guard=consensus_reached, description="Both sides confirmed delivery; settle"),
]

# Cancellation is only open before escrow is funded; afterwards money moves via dispute.
_CANCELLABLE = (S.INQUIRY, S.RFQ_OPEN, S.QUOTE_RECEIVED, S.NEGOTIATING, S.CONTRACTED)

_CANCEL_EDGES: List[TransitionEdge] = [
    TransitionEdge(state, S.CANCELLED, Initiator.ANY, description="Cancelled before escrow")
    for state in _CANCELLABLE
]

_DISPUTE_EDGES: List[TransitionEdge] = [
    TransitionEdge(state, S.DISPUTED, Initiator.ANY, (A.FILE_DISPUTE,),
                   description="Escrow-resolution path")
    for state in TradeState
    if state not in TERMINAL_STATES and state is not S.DISPUTED
] + [
    TransitionEdge(S.DISPUTED, S.COMPLETED, Initiator.ANY, (A.RESOLVE_DISPUTE,),
                   guard=signed_release, description="Dispute resolved: release escrow"),
    TransitionEdge(S.DISPUTED, S.CANCELLED, Initiator.ANY, (A.RESOLVE_DISPUTE,),
                   guard=dispute_refunded, description="Dispute resolved: refund buyer"),
]

ALL_EDGES: Tuple[TransitionEdge, ...] = tuple(_FORWARD_EDGES + _CANCEL_EDGES + _DISPUTE_EDGES)

del A, S


def _build_table(edges) -> Dict[Tuple[TradeState, TradeState], TransitionEdge]:
    table: Dict[Tuple[TradeState, TradeState], TransitionEdge] = {}
    for edge in edges:
        if edge.key in table:
            raise ValueError(f"Duplicate edge: {edge.from_state.value} -> {edge.to_state.value}")
        if edge.from_state in TERMINAL_STATES:
            raise ValueError(f"Terminal state has outgoing edge: {edge.from_state.value}")
        for action in edge.required_actions:
            if action not in ACTION_PREDICATES:
                raise ValueError(f"Edge {edge.key} declares unknown action {action!r}")
        if (
            edge.from_state in STATE_ORDER
            and edge.to_state in STATE_ORDER
            and STATE_ORDER.index(edge.to_state) <= STATE_ORDER.index(edge.from_state)
        ):
            raise ValueError(f"Back-edge not allowed: {edge.from_state.value} -> {edge.to_state.value}")
        table[edge.key] = edge
    return table


TRANSITION_TABLE: Dict[Tuple[TradeState, TradeState], TransitionEdge] = _build_table(ALL_EDGES)


# ============================================================================
# LOOKUPS
# ============================================================================

def get_edge(from_state: TradeState, to_state: TradeState) -> Optional[TransitionEdge]:
    return TRANSITION_TABLE.get((from_state, to_state))


def edges_from(state: TradeState) -> List[TransitionEdge]:
    """Outgoing edges in declaration order."""
    return [edge for edge in ALL_EDGES if edge.from_state == state]


def is_terminal(state: TradeState) -> bool:
    return state in TERMINAL_STATES


def valid_targets(state: TradeState) -> List[TradeState]:
    return [edge.to_state for edge in edges_from(state)]
