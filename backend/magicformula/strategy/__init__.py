from magicformula.strategy.allocator import AccountSnapshot, BudgetBreakdown, CapitalAllocator, CashReservation
from magicformula.strategy.lifecycle import Decision, HoldingLot, HoldingStatus, PositionLifecycleManager
from magicformula.strategy.ranking import MetricsRanker, StockMetric
from magicformula.strategy.validation import TradingParameters

__all__ = [
    "AccountSnapshot",
    "BudgetBreakdown",
    "CapitalAllocator",
    "CashReservation",
    "Decision",
    "HoldingLot",
    "HoldingStatus",
    "PositionLifecycleManager",
    "MetricsRanker",
    "StockMetric",
    "TradingParameters",
]
