from abc import ABC, abstractmethod
from typing import List, Optional

from magicformula.strategy.ranking import StockMetric


class DataFeed(ABC):
    """Abstract base class for screening, fundamentals and quote providers."""

    @abstractmethod
    async def screen(self, exchange: str, min_market_cap: float) -> List[str]:
        """Symbols listed on `exchange` with market cap above `min_market_cap`."""
        pass

    @abstractmethod
    async def fetch_metrics(self, symbols: List[str]) -> List[StockMetric]:
        """
        Return on capital and earnings yield per symbol, in input order.
        Symbols that fail to fetch are left out.
        """
        pass

    @abstractmethod
    async def fetch_quote(self, symbol: str) -> Optional[float]:
        """Latest price, or None when unavailable."""
        pass
