"""
Guard evaluator: decides PASS / BLOCK for an attempted transition.

Pure and side-effect free. Reads the trade snapshot, never the store.
Same (trade, target, actor) always yields the same verdict.

Evaluation order:
1. Edge declared?                 -> INVALID_EDGE
2. Actor may fire the edge?       -> UNAUTHORIZED_ACTOR (role, then party binding)
3. Required actions satisfied?    -> MISSING_REQUIRED_ACTIONS (unsatisfied subset)
4. Edge guard passes?             -> guard's own code (ESCROW_INSUFFICIENT, ...)
5. PASS
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from tradekernel.logging import get_logger, LogStream

from .lifecycle import (
    SIGNING_ROLES,
    Initiator,
    ReasonCode,
    TradeState,
    TransitionEdge,
    edges_from,
    get_edge,
    is_action_satisfied,
    is_terminal,
    valid_targets,
)
from .models import Actor, ActorRole, Trade


class Verdict(str, Enum):
    PASS = "PASS"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class GuardVerdict:
    """Outcome of one guard evaluation."""
    decision: Verdict
    reason_code: ReasonCode
    required_actions: Tuple[str, ...]
    target: str
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.decision == Verdict.PASS

    def to_dict(self):
        return {
            "decision": self.decision.value,
            "reason_code": self.reason_code.value,
            "required_actions": list(self.required_actions),
            "target": self.target,
            "message": self.message,
        }


def _target_str(target: Any) -> str:
    return target.value if isinstance(target, TradeState) else str(target)


def _block(target, code: ReasonCode, actions=(), message: str = "") -> GuardVerdict:
    return GuardVerdict(Verdict.BLOCK, code, tuple(actions), _target_str(target), message)


def unsatisfied_actions(edge: TransitionEdge, trade: Trade) -> Tuple[str, ...]:
    """Required actions of edge not yet satisfied in trade.context, declared order."""
    return tuple(
        action for action in edge.required_actions
        if not is_action_satisfied(action, trade.context)
    )


def party_refusal(trade: Trade, actor: Actor) -> Optional[str]:
    """
    None if actor speaks for the company bound to its role on trade.

    Automation and operators are not bound to a company and always pass.
    """
    if actor.role in (ActorRole.AUTOMATION, ActorRole.OPERATOR):
        return None
    bound = trade.party_id(actor.role)
    if bound is None:
        return f"No {actor.role.value} is assigned to trade {trade.trade_id}"
    if bound != actor.actor_id:
        return f"{actor.actor_id} is not the {actor.role.value} on trade {trade.trade_id}"
    return None


def actor_may_fire(edge: TransitionEdge, trade: Trade, actor: Actor) -> Optional[str]:
    """None if actor may fire edge, else a human-readable refusal."""
    if actor.role == ActorRole.OPERATOR:
        if edge.initiator == Initiator.AUTOMATION:
            return "Edge is fired by automation only"
    elif edge.initiator != Initiator.ANY and edge.initiator.value != actor.role.value:
        return f"Edge requires initiator {edge.initiator.value}, got {actor.role.value}"

    return party_refusal(trade, actor)


def signer_refusal(trade: Trade, actor: Actor) -> Optional[str]:
    """None if actor may sign off settlement of trade, else the refusal."""
    if is_terminal(trade.state):
        return f"Trade {trade.trade_id} is {trade.state.value}; nothing left to sign"
    if actor.role.value not in SIGNING_ROLES:
        return f"{actor.role.value} actors do not sign settlement"
    return party_refusal(trade, actor)


class GuardEvaluator:
    """Stateless evaluator over the static transition table."""

    def __init__(self):
        self.logger = get_logger(LogStream.GUARDS)

    def evaluate(self, trade: Trade, target_state: Any, actor: Actor) -> GuardVerdict:
        target = TradeState.parse(target_state)
        edge = get_edge(trade.state, target) if target is not None else None

        if edge is None:
            legal = ", ".join(s.value for s in valid_targets(trade.state)) or "none (terminal)"
            verdict = _block(
                target_state, ReasonCode.INVALID_EDGE,
                message=f"No edge {trade.state.value} -> {_target_str(target_state)}; legal: {legal}",
            )
            return self._log(trade, actor, verdict)

        refusal = actor_may_fire(edge, trade, actor)
        if refusal is not None:
            return self._log(trade, actor, _block(target, ReasonCode.UNAUTHORIZED_ACTOR, message=refusal))

        missing = unsatisfied_actions(edge, trade)
        if missing:
            verdict = _block(
                target, ReasonCode.MISSING_REQUIRED_ACTIONS, missing,
                message=f"Outstanding: {', '.join(missing)}",
            )
            return self._log(trade, actor, verdict)

        if edge.guard is not None:
            failure = edge.guard(trade)
            if failure is not None:
                verdict = _block(target, failure.reason_code, failure.required_actions, failure.message)
                return self._log(trade, actor, verdict)

        return self._log(trade, actor, GuardVerdict(Verdict.PASS, ReasonCode.OK, (), target.value))

    def next_actions(self, trade: Trade, actor: Actor) -> List[GuardVerdict]:
        """Verdicts for every edge leaving the current state (dry run)."""
        return [self.evaluate(trade, edge.to_state, actor) for edge in edges_from(trade.state)]

    def _log(self, trade: Trade, actor: Actor, verdict: GuardVerdict) -> GuardVerdict:
        self.logger.debug(
            f"Guard {verdict.decision.value}: {trade.state.value} -> {verdict.target}",
            extra={
                "trade_id": trade.trade_id,
                "actor": str(actor),
                "reason_code": verdict.reason_code.value,
                "required_actions": list(verdict.required_actions),
            },
        )
        return verdict
