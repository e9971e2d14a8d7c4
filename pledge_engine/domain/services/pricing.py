"""
Execution price resolution.

Buy fills use the pledge's price target, falling back to the session
reference price. Sell fills are resolved by an explicit policy because the
settlement price source is an operator decision:

- session_reference: session.stock_price, falling back to the buy fill price
- buy_price: the originating buy fill price (flat round trip)
- simulated: buy fill price perturbed by up to +/- max_drift_pct (paper mode)
"""

import random
from decimal import Decimal
from enum import Enum
from typing import Optional

from pledge_engine.domain.models import ExecutionRecord, Pledge, PledgeSession
from pledge_engine.domain.services.commission import money, to_decimal


class SellPricePolicy(str, Enum):
    SESSION_REFERENCE = "session_reference"
    BUY_PRICE = "buy_price"
    SIMULATED = "simulated"


class PriceUnavailableError(ValueError):
    """No usable price for a fill"""


def _positive(value) -> Optional[Decimal]:
    if value is None:
        return None
    value = to_decimal(value)
    return value if value > 0 else None


def resolve_buy_price(session: PledgeSession, pledge: Pledge) -> Decimal:
    price = _positive(pledge.price_target) or _positive(session.stock_price)
    if price is None:
        raise PriceUnavailableError(
            f"No price target or session reference price for pledge {pledge.id}"
        )
    return money(price)


class SellPriceResolver:
    """Resolve the sell fill price under a configured policy"""

    def __init__(
        self,
        policy: SellPricePolicy = SellPricePolicy.SESSION_REFERENCE,
        max_drift_pct: float = 2.0,
        rng: Optional[random.Random] = None,
    ):
        self.policy = SellPricePolicy(policy)
        self.max_drift_pct = Decimal(str(max_drift_pct))
        self._rng = rng or random.Random()

    def resolve(self, session: PledgeSession, pledge: Pledge, buy_record: ExecutionRecord) -> Decimal:
        buy_price = _positive(buy_record.executed_price) or _positive(pledge.price_target)

        if self.policy == SellPricePolicy.SESSION_REFERENCE:
            price = _positive(session.stock_price) or buy_price
        elif self.policy == SellPricePolicy.BUY_PRICE:
            price = buy_price
        else:
            price = self._simulate(buy_price)

        if price is None:
            raise PriceUnavailableError(f"No sell price available for pledge {pledge.id}")
        return money(price)

    def _simulate(self, buy_price: Optional[Decimal]) -> Optional[Decimal]:
        if buy_price is None:
            return None
        drift = Decimal(str(self._rng.uniform(-1.0, 1.0))) * self.max_drift_pct
        return buy_price * (Decimal("1") + drift / Decimal("100"))
