"""
Property-based tests for the trade lifecycle using Hypothesis.

Properties tested:
- Property 1: Undeclared (from, to) pairs always block with INVALID_EDGE
- Property 2: Blocked required actions equal the unsatisfied subset exactly
- Property 3: Verdicts are deterministic for a fixed snapshot
- Property 4: Random attempt sequences never leave the declared state set,
  and blocked attempts never change state or version
"""

import tempfile
from pathlib import Path

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from tradekernel.config import AuditConfig, AutomationConfig, KernelConfig, StoreConfig
from tradekernel.kernel import TradeKernel
from tradekernel.state import (
    ALL_EDGES,
    Actor,
    GuardEvaluator,
    ReasonCode,
    TradeState,
    get_edge,
)
from tradekernel.state.lifecycle import ACTION_PREDICATES, is_action_satisfied

from tests.helpers import BUYER, CARRIER, SELLER, make_trade, trade_snapshot

# action -> context key that satisfies it (flag actions set True, value actions a string)
ACTION_CONTEXT = {
    "submit_quote": ("quote_submitted", True),
    "accept_quote": ("quote_accepted", True),
    "sign_contract": ("contract_signed", True),
    "fund_escrow": ("escrow_funded", True),
    "add_hs_code": ("hs_code", "8471.30"),
    "pass_quality_check": ("quality_check_passed", True),
    "upload_compliance_docs": ("compliance_docs_uploaded", True),
    "confirm_pickup": ("carrier_pickup_confirmed", True),
    "upload_customs_docs": ("customs_docs_uploaded", True),
    "confirm_delivery": ("delivery_confirmed", True),
    "accept_delivery": ("delivery_accepted", True),
    "file_dispute": ("dispute_filed", True),
    "resolve_dispute": ("dispute_resolution", "release"),
}

ACTORS = [
    Actor.buyer(BUYER),
    Actor.seller(SELLER),
    Actor.logistics(CARRIER),
    Actor.automation(),
]

states = st.sampled_from(list(TradeState))
actors = st.sampled_from(ACTORS)
edges = st.sampled_from(list(ALL_EDGES))


def _actor_for(edge):
    role = edge.initiator.value
    if role == "any":
        return Actor.buyer(BUYER)
    return {
        "buyer": Actor.buyer(BUYER),
        "seller": Actor.seller(SELLER),
        "logistics": Actor.logistics(CARRIER),
        "automation": Actor.automation(),
    }[role]


def test_action_table_covers_predicates():
    assert set(ACTION_CONTEXT) == set(ACTION_PREDICATES)
    for action, (key, value) in ACTION_CONTEXT.items():
        assert is_action_satisfied(action, {key: value})


@settings(max_examples=200)
@given(from_state=states, target=states, actor=actors)
def test_undeclared_pairs_are_invalid_edges(from_state, target, actor):
    if get_edge(from_state, target) is not None:
        return
    verdict = GuardEvaluator().evaluate(trade_snapshot(from_state), target, actor)
    assert verdict.reason_code == ReasonCode.INVALID_EDGE
    assert verdict.required_actions == ()


@settings(max_examples=200)
@given(from_state=states, junk=st.text(max_size=20))
def test_undeclared_targets_are_invalid_edges(from_state, junk):
    if TradeState.parse(junk) is not None:
        return
    verdict = GuardEvaluator().evaluate(trade_snapshot(from_state), junk, Actor.buyer(BUYER))
    assert verdict.reason_code == ReasonCode.INVALID_EDGE


@settings(max_examples=300)
@given(edge=edges, data=st.data())
def test_blocked_actions_are_exact_unsatisfied_subset(edge, data):
    satisfied = data.draw(st.sets(st.sampled_from(edge.required_actions))) if edge.required_actions else set()
    context = dict(ACTION_CONTEXT[a] for a in satisfied)

    verdict = GuardEvaluator().evaluate(
        trade_snapshot(edge.from_state, **context), edge.to_state, _actor_for(edge)
    )
    expected = tuple(a for a in edge.required_actions if a not in satisfied)

    if expected:
        assert verdict.reason_code == ReasonCode.MISSING_REQUIRED_ACTIONS
        assert verdict.required_actions == expected
    else:
        assert verdict.reason_code != ReasonCode.MISSING_REQUIRED_ACTIONS
        if not verdict.passed:
            # Only an edge guard may still block, and it names its remediation
            assert edge.guard is not None
            assert verdict.required_actions


@settings(max_examples=100)
@given(from_state=states, target=states, actor=actors,
       flags=st.dictionaries(st.sampled_from([k for k, _ in ACTION_CONTEXT.values()]), st.booleans()))
def test_verdicts_are_deterministic(from_state, target, actor, flags):
    trade = trade_snapshot(from_state, **flags)
    evaluator = GuardEvaluator()
    assert evaluator.evaluate(trade, target, actor) == evaluator.evaluate(trade, target, actor)


attempt_steps = st.lists(
    st.tuples(st.sampled_from(list(TradeState)), st.sampled_from(ACTORS),
              st.sampled_from(list(ACTION_CONTEXT.values()))),
    min_size=1,
    max_size=15,
)


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(steps=attempt_steps)
def test_random_attempts_stay_in_declared_states(steps):
    with tempfile.TemporaryDirectory() as tmp:
        config = KernelConfig(
            store=StoreConfig(db_path=Path(tmp) / "trades.db"),
            audit=AuditConfig(verify_on_startup=False),
            automation=AutomationConfig(enabled=False),
        )
        kernel = TradeKernel(config)
        try:
            make_trade(kernel, "T-PROP", context={"escrow_balance": "1000000"})
            for target, actor, (key, value) in steps:
                kernel.update_context("T-PROP", {key: value})
                before = kernel.get_trade("T-PROP")
                attempt = kernel.attempt_transition("T-PROP", target, actor)
                after = kernel.get_trade("T-PROP")

                assert after.state in set(TradeState)
                if attempt.blocked:
                    assert attempt.required_actions or attempt.reason_code in (
                        ReasonCode.INVALID_EDGE, ReasonCode.UNAUTHORIZED_ACTOR,
                    )
                    assert after.state == before.state
                    assert after.version == before.version
                elif attempt.noop:
                    assert after.version == before.version
                else:
                    assert get_edge(attempt.from_state, after.state) is not None
            assert kernel.verify_audit_chain() >= len(steps)
        finally:
            kernel.close()
