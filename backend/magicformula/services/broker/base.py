from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from magicformula.strategy.allocator import AccountSnapshot


@dataclass(frozen=True)
class BrokerPosition:
    symbol: str
    qty: float
    avg_entry_price: Optional[float]
    current_price: Optional[float]


@dataclass(frozen=True)
class OrderConfirmation:
    order_id: str
    symbol: str
    side: str  # buy | sell
    qty: int
    price: float  # filled average price when known, otherwise the quoted price
    status: str
    submitted_at: datetime


class BrokerGateway(ABC):
    """Abstract base class for brokerage access."""

    @abstractmethod
    async def get_account(self) -> AccountSnapshot:
        pass

    @abstractmethod
    async def get_positions(self) -> List[BrokerPosition]:
        pass

    @abstractmethod
    async def submit_order(
        self,
        symbol: str,
        qty: int,
        side: str,
        reference_price: Optional[float] = None,
    ) -> OrderConfirmation:
        """
        Submit a market order for the whole quantity.

        Raises OrderError when the broker rejects it. `reference_price` is the
        price the order was sized at, reported back if no fill price arrives.
        """
        pass
