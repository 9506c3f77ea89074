"""
Position lifecycle rules.

A holding lot is `active` from its buy confirmation until a sell decision
liquidates it, after which it is `sold` for good. A lot is sold once it has
been held long enough:
- unprofitable (current price <= acquisition price) for at least
  `unprofitable_threshold_days`
- profitable (current price > acquisition price) for at least
  `profitable_threshold_days`
"""

from dataclasses import dataclass, replace
from datetime import datetime
import enum
import logging
from typing import Iterable, Optional

from magicformula.core.exceptions import InvalidInputError, ValidationError
from magicformula.core.metrics import metrics
from magicformula.strategy.validation import (
    as_naive_utc,
    is_valid_price,
    require_non_negative_int,
    to_float,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class HoldingStatus(str, enum.Enum):
    ACTIVE = "active"
    SOLD = "sold"


@dataclass(frozen=True)
class HoldingLot:
    """In-memory mirror of a ledger holdings row."""
    symbol: str
    quantity: int
    acquisition_date: datetime
    acquisition_price: Optional[float] = None
    status: HoldingStatus = HoldingStatus.ACTIVE
    id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == HoldingStatus.ACTIVE


@dataclass(frozen=True)
class Decision:
    sell: bool
    reason: str
    is_profitable: bool
    holding_days: int


def holding_days(acquired: datetime, now: datetime) -> int:
    """Whole days elapsed, floored."""
    elapsed = as_naive_utc(now) - as_naive_utc(acquired)
    return int(elapsed.total_seconds() // SECONDS_PER_DAY)


class PositionLifecycleManager:
    """
    Sell/hold decisions for holding lots.

    When a symbol has several active lots (re-bought before being sold) only
    the earliest-acquired one is evaluated, and a sell decision liquidates
    that lot's entire quantity. There is no per-lot partial accounting.
    """

    def select_lot(self, holdings: Iterable[HoldingLot]) -> Optional[HoldingLot]:
        """Earliest active lot (FIFO); ties keep input order."""
        active = [h for h in holdings if h.is_active]
        if not active:
            return None
        return min(active, key=lambda h: as_naive_utc(h.acquisition_date))

    def evaluate(
        self,
        holding: HoldingLot,
        current_price: float,
        now: datetime,
        unprofitable_threshold_days: int,
        profitable_threshold_days: int,
    ) -> Decision:
        if not isinstance(holding, HoldingLot):
            raise InvalidInputError(f"holding must be a HoldingLot, got {type(holding).__name__}")
        require_non_negative_int("unprofitable_threshold_days", unprofitable_threshold_days)
        require_non_negative_int("profitable_threshold_days", profitable_threshold_days)
        if not isinstance(holding.acquisition_date, datetime):
            raise InvalidInputError(f"{holding.symbol}: acquisition date is missing", symbol=holding.symbol)
        if to_float(holding.acquisition_price) is None:
            raise InvalidInputError(f"{holding.symbol}: acquisition price is missing", symbol=holding.symbol)
        if not is_valid_price(current_price):
            raise ValidationError(
                f"{holding.symbol}: invalid current price {current_price!r}", symbol=holding.symbol
            )

        days = holding_days(holding.acquisition_date, now)
        is_profitable = float(current_price) > float(holding.acquisition_price)

        if not holding.is_active:
            return Decision(sell=False, reason="already sold", is_profitable=is_profitable, holding_days=days)

        if not is_profitable and days >= unprofitable_threshold_days:
            decision = Decision(True, f"unprofitable after {days} days", is_profitable, days)
        elif is_profitable and days >= profitable_threshold_days:
            decision = Decision(True, f"profitable after {days} days", is_profitable, days)
        else:
            decision = Decision(
                False,
                f"holding {days} days, profitable={is_profitable}",
                is_profitable,
                days,
            )

        metrics.exit_evaluated(
            symbol=holding.symbol,
            sell=decision.sell,
            holding_days=days,
            is_profitable=is_profitable,
        )
        return decision

    def mark_sold(self, holding: HoldingLot) -> HoldingLot:
        """active -> sold. Sold is terminal."""
        if not holding.is_active:
            raise InvalidInputError(f"{holding.symbol}: lot {holding.id} is already sold", symbol=holding.symbol)
        return replace(holding, status=HoldingStatus.SOLD)
