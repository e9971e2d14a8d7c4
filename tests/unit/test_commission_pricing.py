"""
Unit Tests for commission, fee and price resolution
"""

import random
from datetime import datetime
from decimal import Decimal

import pytest

from pledge_engine.domain.models import (
    ExecutionRecord,
    ExecutionRule,
    ExecutionStatus,
    FeeType,
    Pledge,
    PledgeSession,
    PledgeSide,
    PledgeStatus,
    SessionMode,
    SessionStatus,
)
from pledge_engine.domain.services.commission import (
    compute_session_stats,
    convenience_fee,
    net_amount,
    platform_commission,
    resolve_commission_rate,
)
from pledge_engine.domain.services.pricing import (
    PriceUnavailableError,
    SellPricePolicy,
    SellPriceResolver,
    resolve_buy_price,
)


def make_session(**overrides) -> PledgeSession:
    fields = dict(
        id=1,
        stock_symbol="INFY",
        stock_name="Infosys",
        session_mode=SessionMode.BUY_SELL_CYCLE,
        execution_rule=ExecutionRule.MANUAL,
        status=SessionStatus.ACTIVE,
    )
    fields.update(overrides)
    return PledgeSession(**fields)


def make_pledge(pledge_id=1, side=PledgeSide.BUY, qty=10, price="1500.00", status=PledgeStatus.READY_FOR_EXECUTION):
    return Pledge(
        id=pledge_id,
        session_id=1,
        user_id="user-1",
        demat_account_id="1208160000012345",
        stock_symbol="INFY",
        side=side,
        qty=qty,
        price_target=Decimal(price) if price is not None else None,
        status=status,
    )


def make_buy_record(price="1500.00") -> ExecutionRecord:
    return ExecutionRecord(
        id=7,
        pledge_id=1,
        session_id=1,
        user_id="user-1",
        demat_account_id="1208160000012345",
        stock_symbol="INFY",
        side=PledgeSide.BUY,
        pledged_qty=10,
        executed_qty=10,
        executed_price=Decimal(price) if price is not None else None,
        total_execution_value=Decimal("15000.00"),
        platform_commission=Decimal("0"),
        commission_rate=Decimal("0"),
        net_amount=Decimal("15000.00"),
        status=ExecutionStatus.COMPLETED,
        executed_at=datetime(2026, 3, 2, 15, 30),
    )


# ----------------------------
# Commission
# ----------------------------

def test_commission_rate_defaults_to_zero():
    assert resolve_commission_rate(make_session()) == Decimal("0")


def test_commission_rate_prefers_session_then_default():
    assert resolve_commission_rate(make_session(commission_rate=Decimal("0.5")), "1.0") == Decimal("0.5")
    assert resolve_commission_rate(make_session(), "1.0") == Decimal("1.0")


def test_platform_commission_is_percent_of_value():
    assert platform_commission(Decimal("15000.00"), Decimal("2")) == Decimal("300.00")
    assert platform_commission(Decimal("1234.56"), Decimal("0.25")) == Decimal("3.09")
    assert platform_commission(Decimal("15000.00"), Decimal("0")) == Decimal("0.00")


def test_net_amount_by_side():
    assert net_amount(PledgeSide.BUY, Decimal("1000"), Decimal("5")) == Decimal("1005.00")
    assert net_amount(PledgeSide.SELL, Decimal("1000"), Decimal("5")) == Decimal("995.00")


# ----------------------------
# Convenience fee
# ----------------------------

def test_flat_convenience_fee():
    session = make_session(convenience_fee_type=FeeType.FLAT, convenience_fee_amount=Decimal("25"))
    assert convenience_fee(session, 10, Decimal("1500")) == Decimal("25.00")


def test_percentage_convenience_fee():
    session = make_session(convenience_fee_type=FeeType.PERCENTAGE, convenience_fee_amount=Decimal("0.5"))
    # 10 x 1500 x 0.5%
    assert convenience_fee(session, 10, Decimal("1500")) == Decimal("75.00")


def test_convenience_fee_never_negative():
    session = make_session(convenience_fee_type=FeeType.FLAT, convenience_fee_amount=Decimal("-5"))
    assert convenience_fee(session, 10, Decimal("1500")) == Decimal("0.00")


# ----------------------------
# Session rollups
# ----------------------------

def test_session_stats_count_only_ready_and_executed():
    pledges = [
        make_pledge(1, qty=10, price="100.00"),
        make_pledge(2, qty=5, price="100.00", status=PledgeStatus.EXECUTED),
        make_pledge(3, side=PledgeSide.SELL, qty=2, price="50.00"),
        make_pledge(4, qty=99, price="100.00", status=PledgeStatus.FAILED),
        make_pledge(5, qty=99, price="100.00", status=PledgeStatus.PENDING),
    ]

    stats = compute_session_stats(pledges)

    assert stats["total_pledges"] == 3
    assert stats["total_pledge_value"] == Decimal("1600.00")
    assert stats["buy_pledges_count"] == 2
    assert stats["buy_pledges_value"] == Decimal("1500.00")
    assert stats["sell_pledges_count"] == 1
    assert stats["sell_pledges_value"] == Decimal("100.00")


# ----------------------------
# Prices
# ----------------------------

def test_buy_price_uses_target_then_session_reference():
    session = make_session(stock_price=Decimal("1490.00"))

    assert resolve_buy_price(session, make_pledge(price="1500.00")) == Decimal("1500.00")
    assert resolve_buy_price(session, make_pledge(price=None)) == Decimal("1490.00")


def test_buy_price_unavailable_raises():
    with pytest.raises(PriceUnavailableError):
        resolve_buy_price(make_session(), make_pledge(price=None))


def test_sell_price_session_reference_policy():
    resolver = SellPriceResolver(SellPricePolicy.SESSION_REFERENCE)
    session = make_session(stock_price=Decimal("1620.00"))

    assert resolver.resolve(session, make_pledge(), make_buy_record()) == Decimal("1620.00")
    # No reference price: flat round trip at the buy fill
    assert resolver.resolve(make_session(), make_pledge(), make_buy_record()) == Decimal("1500.00")


def test_sell_price_buy_price_policy_ignores_session_reference():
    resolver = SellPriceResolver("buy_price")
    session = make_session(stock_price=Decimal("1620.00"))

    assert resolver.resolve(session, make_pledge(), make_buy_record("1510.00")) == Decimal("1510.00")


def test_simulated_sell_price_stays_within_drift():
    resolver = SellPriceResolver(SellPricePolicy.SIMULATED, max_drift_pct=2.0, rng=random.Random(42))

    for _ in range(50):
        price = resolver.resolve(make_session(), make_pledge(), make_buy_record("1000.00"))
        assert Decimal("980.00") <= price <= Decimal("1020.00")


def test_sell_price_unavailable_raises():
    resolver = SellPriceResolver(SellPricePolicy.BUY_PRICE)
    with pytest.raises(PriceUnavailableError):
        resolver.resolve(make_session(), make_pledge(price=None), make_buy_record(price=None))
