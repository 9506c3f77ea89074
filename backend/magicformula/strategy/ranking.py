"""
Magic Formula ranking.

Ranks a stock universe by two factors, both higher-is-better:
- Earnings Yield (EBIT / Enterprise Value)
- Return on Capital (EBIT / (Net Working Capital + Net Fixed Assets))

Each factor rank is the 1-based position in a stable descending sort, the
combined rank is their sum, and the output is stably sorted ascending by
combined rank. Every sort is stable and runs over the same filtered input,
so entries tied on combined rank keep their original relative order.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
import logging
from typing import List, Optional

import pandas as pd

from magicformula.core.exceptions import InvalidInputError
from magicformula.core.metrics import metrics
from magicformula.strategy.validation import is_usable_factor, require_non_negative_int, to_float

logger = logging.getLogger(__name__)


@dataclass
class StockMetric:
    symbol: str
    return_on_capital: Optional[float]
    earnings_yield: Optional[float]
    ey_rank: Optional[int] = None
    roc_rank: Optional[int] = None
    combined_rank: Optional[int] = None


class MetricsRanker:
    """
    Pure ranking over a sequence of StockMetric.

    Entries whose return on capital or earnings yield is missing, not a finite
    number, or zero are dropped before ranking. Treating zero like missing is
    inherited behavior; pass exclude_zero=False to keep legitimate zeros.
    """

    def __init__(self, exclude_zero: bool = True):
        self.exclude_zero = exclude_zero

    def rank(self, stock_metrics: Sequence[StockMetric]) -> List[StockMetric]:
        items = self._validate(stock_metrics)
        valid = [m for m in items if self._is_rankable(m)]
        dropped = len(items) - len(valid)
        if dropped:
            logger.info("Dropped %s of %s entries with missing or invalid factors", dropped, len(items))

        if not valid:
            metrics.ranking_computed(input_count=len(items), ranked_count=0)
            return []

        df = pd.DataFrame(
            {
                "earnings_yield": [to_float(m.earnings_yield) for m in valid],
                "return_on_capital": [to_float(m.return_on_capital) for m in valid],
            }
        )
        df["ey_rank"] = self._positional_rank(df["earnings_yield"])
        df["roc_rank"] = self._positional_rank(df["return_on_capital"])
        df["combined_rank"] = df["ey_rank"] + df["roc_rank"]

        ordered = df.sort_values("combined_rank", kind="stable")

        ranked = [
            replace(
                valid[position],
                ey_rank=int(row.ey_rank),
                roc_rank=int(row.roc_rank),
                combined_rank=int(row.combined_rank),
            )
            for position, row in zip(ordered.index, ordered.itertuples(index=False))
        ]
        metrics.ranking_computed(input_count=len(items), ranked_count=len(ranked))
        return ranked

    def top(self, stock_metrics: Sequence[StockMetric], k: int) -> List[StockMetric]:
        """Rank and keep the best k entries (the buy batch)."""
        require_non_negative_int("k", k)
        return self.rank(stock_metrics)[:k]

    def _positional_rank(self, values: pd.Series) -> pd.Series:
        # method="first" breaks ties by order of appearance
        return values.rank(method="first", ascending=False).astype("int64")

    def _is_rankable(self, metric: StockMetric) -> bool:
        return is_usable_factor(metric.return_on_capital, self.exclude_zero) and is_usable_factor(
            metric.earnings_yield, self.exclude_zero
        )

    def _validate(self, stock_metrics) -> list:
        if isinstance(stock_metrics, (str, bytes, Mapping)) or not isinstance(stock_metrics, Sequence):
            raise InvalidInputError(
                f"rank() expects an ordered sequence of StockMetric, got {type(stock_metrics).__name__}"
            )
        for item in stock_metrics:
            if not isinstance(item, StockMetric):
                raise InvalidInputError(f"rank() expects StockMetric entries, got {type(item).__name__}")
        return list(stock_metrics)
