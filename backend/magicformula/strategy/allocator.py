"""
Equal-weight capital allocation for a buy batch.

The per-stock budget is the more conservative of two bounds:
- theoretical: portfolio_value * max_investment_percent / batch_size
- cash constrained: cash / batch_size (negative cash counts as zero)

Budget left unused by a skipped symbol is not redistributed.
"""

from dataclasses import dataclass
import logging
import math
from typing import Dict, Mapping, Optional

from magicformula.core.exceptions import InvalidInputError
from magicformula.strategy.validation import (
    is_valid_price,
    require_fraction,
    require_non_negative,
    require_positive_int,
    to_float,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSnapshot:
    """Broker account figures, valid only at the instant they were fetched."""
    cash: float
    portfolio_value: float


@dataclass(frozen=True)
class BudgetBreakdown:
    theoretical_per_stock: float
    cash_constrained_per_stock: float
    effective_per_stock: float

    @property
    def cash_constrained(self) -> bool:
        return self.cash_constrained_per_stock < self.theoretical_per_stock


class CashReservation:
    """
    Running total of cash still spendable in one batch.

    Orders are sized against the snapshot budget; the reservation caps each
    order to what the remaining snapshot cash can pay for at the live price
    and is debited with the actual notional once the order is confirmed.
    """

    def __init__(self, available: float):
        self.available = require_non_negative("available cash", available)
        self.committed = 0.0

    @property
    def remaining(self) -> float:
        return max(0.0, self.available - self.committed)

    def cap(self, qty: int, price: float) -> int:
        if not is_valid_price(price) or qty <= 0:
            return 0
        affordable = math.floor(self.remaining / float(price))
        return max(0, min(qty, affordable))

    def commit(self, qty: int, price: float) -> None:
        self.committed += qty * float(price)


class CapitalAllocator:
    """Pure sizing: account snapshot + ranked selection -> whole-share quantities."""

    def budget(
        self,
        account: AccountSnapshot,
        batch_size: int,
        max_investment_percent: float,
    ) -> BudgetBreakdown:
        if not isinstance(account, AccountSnapshot):
            raise InvalidInputError(f"account must be an AccountSnapshot, got {type(account).__name__}")
        require_positive_int("batch_size", batch_size)
        pct = require_fraction("max_investment_percent", max_investment_percent)
        cash = to_float(account.cash)
        if cash is None:
            raise InvalidInputError(f"cash must be a number, got {account.cash!r}")
        if cash < 0:
            # margin debit: nothing spendable, every symbol sizes to zero
            logger.warning("Account cash is negative ($%.2f); using a zero budget", cash)
            cash = 0.0
        portfolio_value = require_non_negative("portfolio_value", account.portfolio_value)

        theoretical = portfolio_value * pct / batch_size
        cash_constrained = cash / batch_size
        return BudgetBreakdown(
            theoretical_per_stock=theoretical,
            cash_constrained_per_stock=cash_constrained,
            effective_per_stock=min(theoretical, cash_constrained),
        )

    def quantity_for(self, budget_per_stock: float, price) -> int:
        """Whole shares affordable with the budget; 0 for an unusable price."""
        if not is_valid_price(price):
            return 0
        qty = math.floor(budget_per_stock / to_float(price))
        return qty if qty > 0 else 0

    def allocate(
        self,
        account: AccountSnapshot,
        batch_size: int,
        max_investment_percent: float,
        prices: Mapping[str, Optional[float]],
        reserve_cash: bool = False,
    ) -> Dict[str, int]:
        """
        Size every symbol in `prices` (in iteration order).

        Symbols with a missing, NaN or non-positive price, or whose budget
        buys less than one share, map to 0. With reserve_cash, each quantity
        is also capped by the snapshot cash not yet spent by earlier symbols.
        """
        if not isinstance(prices, Mapping):
            raise InvalidInputError(f"prices must be a mapping of symbol to price, got {type(prices).__name__}")

        breakdown = self.budget(account, batch_size, max_investment_percent)
        reservation = CashReservation(max(account.cash, 0.0)) if reserve_cash else None

        allocation: Dict[str, int] = {}
        for symbol, price in prices.items():
            qty = self.quantity_for(breakdown.effective_per_stock, price)
            if qty == 0:
                logger.info("Skipping %s: price %r yields no whole shares", symbol, price)
                allocation[symbol] = 0
                continue
            if reservation is not None:
                qty = reservation.cap(qty, to_float(price))
                reservation.commit(qty, to_float(price))
            allocation[symbol] = qty
        return allocation
