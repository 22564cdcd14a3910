"""
Transition table declaration tests.

TESTS:
    1.  Terminal states have no outgoing edges.
    2.  DISPUTED exits only to COMPLETED or CANCELLED.
    3.  No back-edge along the forward order.
    4.  Every non-terminal state can be disputed.
    5.  Cancellation is closed once escrow is funded.
    6.  Every declared action has a context predicate.
    7.  Table rejects duplicate / terminal / unknown-action / back edges.
    8.  TradeState.parse returns None for undeclared values.
    9.  Edge to_dict carries guard name.
   10.  Automation-only edge is SHIPPED -> CUSTOMS_CLEARANCE.
"""

import pytest

from tradekernel.state.lifecycle import (
    ACTION_PREDICATES,
    ALL_EDGES,
    STATE_ORDER,
    TERMINAL_STATES,
    TRANSITION_TABLE,
    Initiator,
    TradeState,
    TransitionEdge,
    _build_table,
    edges_from,
    get_edge,
    is_terminal,
    valid_targets,
)


class TestTableShape:

    def test_terminal_states_have_no_outgoing_edges(self):
        for state in TERMINAL_STATES:
            assert is_terminal(state)
            assert edges_from(state) == []
            assert valid_targets(state) == []

    def test_disputed_exits_only_to_completed_or_cancelled(self):
        targets = set(valid_targets(TradeState.DISPUTED))
        assert targets == {TradeState.COMPLETED, TradeState.CANCELLED}

    def test_no_back_edges_along_forward_order(self):
        for edge in ALL_EDGES:
            if edge.from_state in STATE_ORDER and edge.to_state in STATE_ORDER:
                assert STATE_ORDER.index(edge.to_state) > STATE_ORDER.index(edge.from_state), edge

    def test_every_open_state_can_be_disputed(self):
        for state in TradeState:
            if state in TERMINAL_STATES or state == TradeState.DISPUTED:
                continue
            edge = get_edge(state, TradeState.DISPUTED)
            assert edge is not None, state
            assert edge.required_actions == ("file_dispute",)

    def test_cancellation_closed_after_escrow(self):
        assert get_edge(TradeState.CONTRACTED, TradeState.CANCELLED) is not None
        for state in (TradeState.ESCROW_FUNDED, TradeState.PRODUCTION, TradeState.SHIPPED,
                      TradeState.DELIVERED):
            assert get_edge(state, TradeState.CANCELLED) is None

    def test_all_actions_have_predicates(self):
        for edge in ALL_EDGES:
            for action in edge.required_actions:
                assert action in ACTION_PREDICATES

    def test_table_indexes_every_edge(self):
        assert len(TRANSITION_TABLE) == len(ALL_EDGES)
        for edge in ALL_EDGES:
            assert TRANSITION_TABLE[edge.key] is edge

    def test_automation_only_edge(self):
        automation_edges = [e for e in ALL_EDGES if e.initiator == Initiator.AUTOMATION]
        assert [e.key for e in automation_edges] == [
            (TradeState.SHIPPED, TradeState.CUSTOMS_CLEARANCE)
        ]

    def test_edge_to_dict_names_guard(self):
        edge = get_edge(TradeState.CONTRACTED, TradeState.ESCROW_FUNDED)
        data = edge.to_dict()
        assert data["guard"] == "escrow_sufficient"
        assert data["required_actions"] == ["fund_escrow"]
        assert data["initiator"] == "buyer"


class TestTableValidation:

    def test_rejects_duplicate_edge(self):
        edge = TransitionEdge(TradeState.INQUIRY, TradeState.RFQ_OPEN, Initiator.BUYER)
        with pytest.raises(ValueError, match="Duplicate"):
            _build_table([edge, edge])

    def test_rejects_edge_out_of_terminal_state(self):
        edge = TransitionEdge(TradeState.COMPLETED, TradeState.DISPUTED, Initiator.ANY)
        with pytest.raises(ValueError, match="Terminal"):
            _build_table([edge])

    def test_rejects_unknown_action(self):
        edge = TransitionEdge(TradeState.INQUIRY, TradeState.RFQ_OPEN, Initiator.BUYER,
                              ("bribe_official",))
        with pytest.raises(ValueError, match="unknown action"):
            _build_table([edge])

    def test_rejects_back_edge(self):
        edge = TransitionEdge(TradeState.SHIPPED, TradeState.PRODUCTION, Initiator.SELLER)
        with pytest.raises(ValueError, match="Back-edge"):
            _build_table([edge])


class TestStateParse:

    def test_parse_member_and_value(self):
        assert TradeState.parse(TradeState.SHIPPED) is TradeState.SHIPPED
        assert TradeState.parse("shipped") is TradeState.SHIPPED

    @pytest.mark.parametrize("value", ["SHIPPED", "teleported", "", None, 3])
    def test_parse_undeclared_returns_none(self, value):
        assert TradeState.parse(value) is None
