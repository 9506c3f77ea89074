"""
Error taxonomy for trading cycles.

Per-symbol errors (DataFetchError, ValidationError, OrderError, LedgerError)
are isolated by the cycles; InvalidInputError aborts the current cycle only.
"""


class TradingError(Exception):
    """Base class for all trading errors."""

    def __init__(self, message: str, symbol: str | None = None):
        super().__init__(message)
        self.symbol = symbol


class DataFetchError(TradingError):
    """Screening, metrics or quote retrieval failed."""


class ValidationError(TradingError):
    """A price or quantity is unusable (missing, NaN, zero or negative)."""


class OrderError(TradingError):
    """The broker rejected or failed an order submission."""


class LedgerError(TradingError):
    """A holdings/transactions read or write failed."""


class InvalidInputError(TradingError):
    """Malformed configuration or input shape handed to a strategy component."""


class CycleAlreadyRunningError(TradingError):
    """Another run of the same cycle already holds the run lock for this date."""
