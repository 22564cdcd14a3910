"""
Automation rules: system-initiated transitions triggered by observed events.

A rule matches on the trade's current state plus context flags. Rules are
plain data; the trigger bus decides when to evaluate them and records
what they did.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from tradekernel.state.lifecycle import TradeState, is_truthy
from tradekernel.state.models import Trade


@dataclass(frozen=True)
class AutomationRule:
    """Fire target_state when trade is in from_state with every flag in context truthy."""
    name: str
    from_state: TradeState
    target_state: TradeState
    context_flags: Tuple[str, ...]
    description: str = ""

    def matches(self, trade: Trade) -> bool:
        if trade.state != self.from_state:
            return False
        return all(is_truthy(trade.context.get(flag)) for flag in self.context_flags)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "from_state": self.from_state.value,
            "target_state": self.target_state.value,
            "context_flags": list(self.context_flags),
            "description": self.description,
        }


AUTO_CUSTOMS_CLEARANCE = AutomationRule(
    name="auto_customs_clearance",
    from_state=TradeState.SHIPPED,
    target_state=TradeState.CUSTOMS_CLEARANCE,
    context_flags=("carrier_pickup_confirmed", "customs_docs_uploaded"),
    description="Pickup confirmed and customs docs in: move to customs",
)

AUTO_COMPLETE_ON_DUAL_CONFIRMATION = AutomationRule(
    name="auto_complete_on_dual_confirmation",
    from_state=TradeState.DELIVERED,
    target_state=TradeState.COMPLETED,
    context_flags=("delivery_confirmed", "delivery_accepted"),
    description="Carrier confirmed and buyer accepted delivery: settle",
)

DEFAULT_RULES: Tuple[AutomationRule, ...] = (
    AUTO_CUSTOMS_CLEARANCE,
    AUTO_COMPLETE_ON_DUAL_CONFIRMATION,
)
