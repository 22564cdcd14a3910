# tests/helpers.py
"""Shared trade-building helpers for the kernel tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from tradekernel.kernel import TradeKernel
from tradekernel.state import Actor, Trade, TradeState

BUYER = "buyer-co"
SELLER = "seller-co"
CARRIER = "carrier-co"

QUANTITY = Decimal("100")
UNIT_PRICE = Decimal("12.50")
CONTRACT_VALUE = QUANTITY * UNIT_PRICE

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# (target, actor, context written before the attempt)
HAPPY_PATH: List[Tuple[TradeState, Actor, Dict[str, Any]]] = [
    (TradeState.RFQ_OPEN, Actor.buyer(BUYER), {}),
    (TradeState.QUOTE_RECEIVED, Actor.seller(SELLER), {"quote_submitted": True}),
    (TradeState.CONTRACTED, Actor.buyer(BUYER), {"quote_accepted": True, "contract_signed": True}),
    (TradeState.ESCROW_FUNDED, Actor.buyer(BUYER),
     {"escrow_funded": True, "escrow_balance": str(CONTRACT_VALUE)}),
    (TradeState.PRODUCTION, Actor.seller(SELLER), {}),
    (TradeState.QUALITY_CHECK, Actor.seller(SELLER), {"hs_code": "8471.30"}),
    (TradeState.SHIPPED, Actor.seller(SELLER),
     {"quality_check_passed": True, "compliance_docs_uploaded": True}),
    (TradeState.IN_TRANSIT, Actor.logistics(CARRIER), {"carrier_pickup_confirmed": True}),
    (TradeState.CUSTOMS_CLEARANCE, Actor.logistics(CARRIER), {"customs_docs_uploaded": True}),
    (TradeState.DELIVERED, Actor.logistics(CARRIER), {"delivery_confirmed": True}),
    (TradeState.COMPLETED, Actor.buyer(BUYER), {"delivery_accepted": True}),
]


def sign_settlement(kernel: TradeKernel, trade_id: str) -> None:
    """Every party bound to the trade signs off settlement."""
    trade = kernel.get_trade(trade_id)
    kernel.record_signature(trade_id, Actor.buyer(trade.buyer_id))
    kernel.record_signature(trade_id, Actor.seller(trade.seller_id))
    if trade.logistics_id:
        kernel.record_signature(trade_id, Actor.logistics(trade.logistics_id))


def drive_to(kernel: TradeKernel, trade_id: str, target: TradeState) -> Trade:
    """Walk trade_id along HAPPY_PATH until it sits in target (signing before settlement)."""
    for state, actor, context in HAPPY_PATH:
        if state == TradeState.COMPLETED:
            sign_settlement(kernel, trade_id)
        if context:
            kernel.update_context(trade_id, context, source="test")
        if kernel.get_trade(trade_id).state != state:
            attempt = kernel.attempt_transition(trade_id, state, actor)
            assert attempt.applied, attempt
        if state == target:
            break
    trade = kernel.get_trade(trade_id)
    assert trade.state == target
    return trade


def make_trade(kernel: TradeKernel, trade_id: str = "T-1001", **overrides) -> Trade:
    params = dict(
        buyer_id=BUYER,
        seller_id=SELLER,
        quantity=QUANTITY,
        unit_price=UNIT_PRICE,
        currency="USD",
        logistics_id=CARRIER,
    )
    params.update(overrides)
    return kernel.create_trade(trade_id, **params)


def trade_snapshot(state: TradeState = TradeState.INQUIRY, **context) -> Trade:
    """Unpersisted trade for pure guard tests."""
    return Trade(
        trade_id="T-PURE",
        buyer_id=BUYER,
        seller_id=SELLER,
        logistics_id=CARRIER,
        quantity=QUANTITY,
        unit_price=UNIT_PRICE,
        currency="USD",
        state=state,
        context=dict(context),
        created_at=START,
    )
