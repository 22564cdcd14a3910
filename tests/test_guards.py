"""
Guard evaluator tests (pure, no store).

TESTS:
    1.  Undeclared edge -> INVALID_EDGE, empty required actions.
    2.  Undeclared target string -> INVALID_EDGE.
    3.  Wrong role -> UNAUTHORIZED_ACTOR (seller on buyer edge).
    4.  Right role, wrong company -> UNAUTHORIZED_ACTOR.
    5.  Logistics actor on trade with no carrier -> UNAUTHORIZED_ACTOR.
    6.  Missing actions returned as exact unsatisfied subset, declared order.
    7.  Missing actions reported before the edge guard runs.
    8.  Escrow below contract value -> ESCROW_INSUFFICIENT + fund_escrow.
    9.  Compliance hold -> COMPLIANCE_HOLD + resolve_compliance_case.
   10.  Dispute resolution mismatch.
   11.  String flags from JSON writers count as satisfied.
   12.  Deterministic and non-mutating.
   13.  next_actions covers every outgoing edge.
   14.  Operator fires party edges, never automation edges.
   15.  Settlement waits for every bound party's sign-off; signatures from
        other companies do not count; no carrier means no logistics sign-off.
   16.  Released dispute still needs sign-off.
"""

import copy

import pytest

from tradekernel.state import Actor, GuardEvaluator, ReasonCode, TradeState, Verdict
from tradekernel.state.lifecycle import edges_from

from tests.helpers import BUYER, CARRIER, CONTRACT_VALUE, SELLER, trade_snapshot


@pytest.fixture
def evaluator():
    return GuardEvaluator()


class TestEdgeAndActor:

    def test_undeclared_edge_is_invalid(self, evaluator):
        trade = trade_snapshot(TradeState.INQUIRY)
        verdict = evaluator.evaluate(trade, TradeState.SHIPPED, Actor.buyer(BUYER))
        assert verdict.decision == Verdict.BLOCK
        assert verdict.reason_code == ReasonCode.INVALID_EDGE
        assert verdict.required_actions == ()
        assert "rfq_open" in verdict.message

    def test_undeclared_target_string_is_invalid(self, evaluator):
        trade = trade_snapshot(TradeState.INQUIRY)
        verdict = evaluator.evaluate(trade, "teleported", Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.INVALID_EDGE
        assert verdict.target == "teleported"

    def test_terminal_state_has_no_legal_targets(self, evaluator):
        trade = trade_snapshot(TradeState.COMPLETED)
        verdict = evaluator.evaluate(trade, TradeState.DISPUTED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.INVALID_EDGE
        assert "terminal" in verdict.message

    def test_seller_on_buyer_edge_is_unauthorized(self, evaluator):
        trade = trade_snapshot(TradeState.INQUIRY)
        verdict = evaluator.evaluate(trade, TradeState.RFQ_OPEN, Actor.seller(SELLER))
        assert verdict.reason_code == ReasonCode.UNAUTHORIZED_ACTOR
        assert verdict.required_actions == ()

    def test_other_company_as_buyer_is_unauthorized(self, evaluator):
        trade = trade_snapshot(TradeState.INQUIRY)
        verdict = evaluator.evaluate(trade, TradeState.RFQ_OPEN, Actor.buyer("someone-else"))
        assert verdict.reason_code == ReasonCode.UNAUTHORIZED_ACTOR
        assert "someone-else" in verdict.message

    def test_unassigned_logistics_is_unauthorized(self, evaluator):
        trade = trade_snapshot(TradeState.SHIPPED, carrier_pickup_confirmed=True)
        trade.logistics_id = None
        verdict = evaluator.evaluate(trade, TradeState.IN_TRANSIT, Actor.logistics(CARRIER))
        assert verdict.reason_code == ReasonCode.UNAUTHORIZED_ACTOR

    def test_human_cannot_fire_automation_edge(self, evaluator):
        trade = trade_snapshot(TradeState.SHIPPED, carrier_pickup_confirmed=True,
                               customs_docs_uploaded=True)
        verdict = evaluator.evaluate(trade, TradeState.CUSTOMS_CLEARANCE, Actor.logistics(CARRIER))
        assert verdict.reason_code == ReasonCode.UNAUTHORIZED_ACTOR

    def test_any_edge_accepts_each_party(self, evaluator):
        trade = trade_snapshot(TradeState.QUOTE_RECEIVED)
        for actor in (Actor.buyer(BUYER), Actor.seller(SELLER)):
            assert evaluator.evaluate(trade, TradeState.NEGOTIATING, actor).passed

    def test_operator_fires_party_edges(self, evaluator):
        trade = trade_snapshot(TradeState.INQUIRY)
        assert evaluator.evaluate(trade, TradeState.RFQ_OPEN, Actor.operator("ops-1")).passed

        trade = trade_snapshot(TradeState.CONTRACTED)
        verdict = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.operator("ops-1"))
        assert verdict.reason_code == ReasonCode.MISSING_REQUIRED_ACTIONS

    def test_operator_cannot_fire_automation_edge(self, evaluator):
        trade = trade_snapshot(TradeState.SHIPPED, carrier_pickup_confirmed=True,
                               customs_docs_uploaded=True)
        verdict = evaluator.evaluate(trade, TradeState.CUSTOMS_CLEARANCE, Actor.operator("ops-1"))
        assert verdict.reason_code == ReasonCode.UNAUTHORIZED_ACTOR


class TestRequiredActions:

    def test_contracted_without_escrow_flag(self, evaluator):
        trade = trade_snapshot(TradeState.CONTRACTED, escrow_funded=False)
        verdict = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.MISSING_REQUIRED_ACTIONS
        assert verdict.required_actions == ("fund_escrow",)

    def test_unsatisfied_subset_in_declared_order(self, evaluator):
        trade = trade_snapshot(TradeState.QUOTE_RECEIVED, quote_accepted=True)
        verdict = evaluator.evaluate(trade, TradeState.CONTRACTED, Actor.buyer(BUYER))
        assert verdict.required_actions == ("sign_contract",)

        trade = trade_snapshot(TradeState.QUOTE_RECEIVED)
        verdict = evaluator.evaluate(trade, TradeState.CONTRACTED, Actor.buyer(BUYER))
        assert verdict.required_actions == ("accept_quote", "sign_contract")

    def test_missing_actions_win_over_guard(self, evaluator):
        trade = trade_snapshot(TradeState.CONTRACTED, escrow_balance="0")
        verdict = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.MISSING_REQUIRED_ACTIONS

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "yes", 1, True])
    def test_truthy_flag_values(self, evaluator, value):
        trade = trade_snapshot(TradeState.RFQ_OPEN, quote_submitted=value)
        assert evaluator.evaluate(trade, TradeState.QUOTE_RECEIVED, Actor.seller(SELLER)).passed

    @pytest.mark.parametrize("value", ["false", "0", "", 0, False, None])
    def test_falsy_flag_values(self, evaluator, value):
        trade = trade_snapshot(TradeState.RFQ_OPEN, quote_submitted=value)
        verdict = evaluator.evaluate(trade, TradeState.QUOTE_RECEIVED, Actor.seller(SELLER))
        assert verdict.required_actions == ("submit_quote",)

    def test_blank_hs_code_is_missing(self, evaluator):
        trade = trade_snapshot(TradeState.PRODUCTION, hs_code="   ")
        verdict = evaluator.evaluate(trade, TradeState.QUALITY_CHECK, Actor.seller(SELLER))
        assert verdict.required_actions == ("add_hs_code",)


class TestEdgeGuards:

    def test_escrow_insufficient(self, evaluator):
        trade = trade_snapshot(TradeState.CONTRACTED, escrow_funded=True, escrow_balance="100.00")
        verdict = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.ESCROW_INSUFFICIENT
        assert verdict.required_actions == ("fund_escrow",)

    def test_escrow_exactly_sufficient(self, evaluator):
        trade = trade_snapshot(TradeState.CONTRACTED, escrow_funded=True,
                               escrow_balance=str(CONTRACT_VALUE))
        assert evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER)).passed

    @pytest.mark.parametrize("balance", ["lots", "NaN", "sNaN", float("nan"), "Infinity", float("inf")])
    def test_escrow_balance_unparseable(self, evaluator, balance):
        trade = trade_snapshot(TradeState.CONTRACTED, escrow_funded=True, escrow_balance=balance)
        verdict = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.ESCROW_INSUFFICIENT
        assert verdict.required_actions == ("fund_escrow",)

    @pytest.mark.parametrize("context", [
        {"compliance_verdict": "hold"},
        {"compliance_verdict": "REJECTED"},
        {"compliance_verdict": "error"},
        {"compliance_hold": True},
    ])
    def test_compliance_hold_blocks_production(self, evaluator, context):
        trade = trade_snapshot(TradeState.ESCROW_FUNDED, **context)
        verdict = evaluator.evaluate(trade, TradeState.PRODUCTION, Actor.seller(SELLER))
        assert verdict.reason_code == ReasonCode.COMPLIANCE_HOLD
        assert verdict.required_actions == ("resolve_compliance_case",)

    def test_compliance_cleared_passes(self, evaluator):
        trade = trade_snapshot(TradeState.ESCROW_FUNDED, compliance_verdict="cleared")
        assert evaluator.evaluate(trade, TradeState.PRODUCTION, Actor.seller(SELLER)).passed

    def test_dispute_resolution_mismatch(self, evaluator):
        trade = trade_snapshot(TradeState.DISPUTED, dispute_resolution="refund")
        verdict = evaluator.evaluate(trade, TradeState.COMPLETED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.DISPUTE_RESOLUTION_MISMATCH
        assert verdict.required_actions == ("resolve_dispute",)

        assert evaluator.evaluate(trade, TradeState.CANCELLED, Actor.seller(SELLER)).passed

    def test_settlement_waits_for_every_sign_off(self, evaluator):
        trade = trade_snapshot(TradeState.DELIVERED, delivery_confirmed=True, delivery_accepted=True,
                               signatures={"buyer": BUYER})
        verdict = evaluator.evaluate(trade, TradeState.COMPLETED, Actor.buyer(BUYER))
        assert verdict.reason_code == ReasonCode.CONSENSUS_PENDING
        assert verdict.required_actions == ("seller_sign_off", "logistics_sign_off")

        trade.context["signatures"] = {"buyer": BUYER, "seller": SELLER, "logistics": CARRIER}
        assert evaluator.evaluate(trade, TradeState.COMPLETED, Actor.buyer(BUYER)).passed

    def test_sign_off_from_other_company_does_not_count(self, evaluator):
        trade = trade_snapshot(TradeState.DELIVERED, delivery_confirmed=True, delivery_accepted=True,
                               signatures={"buyer": BUYER, "seller": "someone-else", "logistics": CARRIER})
        verdict = evaluator.evaluate(trade, TradeState.COMPLETED, Actor.buyer(BUYER))
        assert verdict.required_actions == ("seller_sign_off",)

    def test_no_carrier_no_logistics_sign_off(self, evaluator):
        trade = trade_snapshot(TradeState.DELIVERED, delivery_confirmed=True, delivery_accepted=True,
                               signatures={"buyer": BUYER, "seller": SELLER})
        trade.logistics_id = None
        assert evaluator.evaluate(trade, TradeState.COMPLETED, Actor.buyer(BUYER)).passed

    def test_released_dispute_needs_sign_off(self, evaluator):
        trade = trade_snapshot(TradeState.DISPUTED, dispute_resolution="release")
        verdict = evaluator.evaluate(trade, TradeState.COMPLETED, Actor.seller(SELLER))
        assert verdict.reason_code == ReasonCode.CONSENSUS_PENDING
        assert verdict.required_actions == ("buyer_sign_off", "seller_sign_off", "logistics_sign_off")


class TestPurity:

    def test_same_input_same_verdict(self, evaluator):
        trade = trade_snapshot(TradeState.CONTRACTED, escrow_funded=True, escrow_balance="10")
        first = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER))
        second = evaluator.evaluate(trade, TradeState.ESCROW_FUNDED, Actor.buyer(BUYER))
        assert first == second

    def test_does_not_mutate_trade(self, evaluator):
        trade = trade_snapshot(TradeState.QUALITY_CHECK, quality_check_passed=True)
        before = copy.deepcopy(trade.to_dict())
        evaluator.evaluate(trade, TradeState.SHIPPED, Actor.seller(SELLER))
        assert trade.to_dict() == before

    def test_next_actions_covers_outgoing_edges(self, evaluator):
        trade = trade_snapshot(TradeState.CONTRACTED)
        verdicts = evaluator.next_actions(trade, Actor.buyer(BUYER))
        assert [v.target for v in verdicts] == [e.to_state.value for e in edges_from(trade.state)]
        by_target = {v.target: v for v in verdicts}
        assert by_target["cancelled"].passed
        assert by_target["escrow_funded"].required_actions == ("fund_escrow",)
        assert by_target["disputed"].required_actions == ("file_dispute",)
