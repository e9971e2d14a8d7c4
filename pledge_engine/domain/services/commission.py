"""
COMMISSION & FEE ENGINE

Pure money calculations for executions and pledge intake.

RULES:
❌ No I/O
✅ Decimal only, quantized to paise
✅ Commission rate defaults to 0 when unset (never a historical constant)
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from pledge_engine.domain.models import (
    FeeType,
    Pledge,
    PledgeSession,
    PledgeSide,
    PledgeStatus,
)


Number = Union[Decimal, int, float, str]

PAISE = Decimal("0.01")
ZERO = Decimal("0")

# Pledges that count toward session rollups
ROLLUP_STATUSES = (PledgeStatus.READY_FOR_EXECUTION, PledgeStatus.EXECUTED)


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Optional[Number]) -> Decimal:
    """Quantize to 2 decimal places"""
    return to_decimal(value).quantize(PAISE, rounding=ROUND_HALF_UP)


def resolve_commission_rate(session: PledgeSession, default_rate: Optional[Number] = None) -> Decimal:
    """
    Session commission rate, falling back to the configured default, then 0.
    """
    if session.commission_rate is not None:
        return to_decimal(session.commission_rate)
    return to_decimal(default_rate)


def platform_commission(total_execution_value: Number, commission_rate: Number) -> Decimal:
    """platform_commission = value x rate / 100"""
    return money(to_decimal(total_execution_value) * to_decimal(commission_rate) / Decimal("100"))


def net_amount(side: PledgeSide, total_execution_value: Number, commission: Number) -> Decimal:
    """
    Investor cash impact of a fill.

    Buys are debited value + commission, sells credited value - commission.
    """
    value = to_decimal(total_execution_value)
    fee = to_decimal(commission)
    if PledgeSide(side) == PledgeSide.BUY:
        return money(value + fee)
    return money(value - fee)


def convenience_fee(session: PledgeSession, qty: int, price_target: Number) -> Decimal:
    """
    Convenience fee for a pledge: flat amount or percent of pledge value.
    Never negative.
    """
    amount = to_decimal(session.convenience_fee_amount)
    if FeeType(session.convenience_fee_type) == FeeType.PERCENTAGE:
        fee = Decimal(qty) * to_decimal(price_target) * amount / Decimal("100")
    else:
        fee = amount
    return money(max(ZERO, fee))


def compute_session_stats(pledges: Iterable[Pledge]) -> dict:
    """
    Recompute session rollup counters from its pledges.

    Only ready_for_execution and executed pledges count.
    """
    stats = {
        "total_pledges": 0,
        "total_pledge_value": ZERO,
        "buy_pledges_count": 0,
        "sell_pledges_count": 0,
        "buy_pledges_value": ZERO,
        "sell_pledges_value": ZERO,
    }

    for pledge in pledges:
        if pledge.status not in ROLLUP_STATUSES:
            continue
        value = pledge.value
        stats["total_pledges"] += 1
        stats["total_pledge_value"] += value
        if pledge.side == PledgeSide.BUY:
            stats["buy_pledges_count"] += 1
            stats["buy_pledges_value"] += value
        elif pledge.side == PledgeSide.SELL:
            stats["sell_pledges_count"] += 1
            stats["sell_pledges_value"] += value

    for key in ("total_pledge_value", "buy_pledges_value", "sell_pledges_value"):
        stats[key] = money(stats[key])

    return stats
