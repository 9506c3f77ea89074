"""
Shared numeric checks and validated strategy parameters.

Missing, not-a-number and zero are distinct conditions here; callers decide
which of them disqualify a value.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
import math
from typing import Any, Optional

from magicformula.core.exceptions import InvalidInputError


def to_float(value: Any) -> Optional[float]:
    """Coerce to a finite float, or None when missing / non-numeric / non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def is_missing(value: Any) -> bool:
    return value is None


def is_invalid_number(value: Any) -> bool:
    """True for present values that are not a finite number (NaN, inf, junk strings)."""
    return value is not None and to_float(value) is None


def is_zero(value: Any) -> bool:
    numeric = to_float(value)
    return numeric is not None and numeric == 0.0


def is_usable_factor(value: Any, exclude_zero: bool = True) -> bool:
    """A ranking factor must be present and finite; zero counts as missing unless told otherwise."""
    if is_missing(value) or is_invalid_number(value):
        return False
    if exclude_zero and is_zero(value):
        return False
    return True


def is_valid_price(value: Any) -> bool:
    numeric = to_float(value)
    return numeric is not None and numeric > 0


def as_naive_utc(value: datetime) -> datetime:
    """Normalize a timestamp to naive UTC so aware and naive values compare."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    return value


def require_non_negative_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInputError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def require_fraction(name: str, value: Any) -> float:
    numeric = to_float(value)
    if numeric is None or not 0 < numeric <= 1:
        raise InvalidInputError(f"{name} must be in (0, 1], got {value!r}")
    return numeric


def require_non_negative(name: str, value: Any) -> float:
    numeric = to_float(value)
    if numeric is None or numeric < 0:
        raise InvalidInputError(f"{name} must be a non-negative number, got {value!r}")
    return numeric


@dataclass(frozen=True)
class TradingParameters:
    """Strategy configuration consumed by the cycles, validated on construction."""
    batch_size: int
    max_investment_percent: float
    unprofitable_threshold_days: int
    profitable_threshold_days: int
    min_market_cap: float = 0.0
    exchange: str = "NYSE"

    def __post_init__(self):
        require_positive_int("batch_size", self.batch_size)
        require_fraction("max_investment_percent", self.max_investment_percent)
        require_non_negative_int("unprofitable_threshold_days", self.unprofitable_threshold_days)
        require_non_negative_int("profitable_threshold_days", self.profitable_threshold_days)
        require_non_negative("min_market_cap", self.min_market_cap)
        if not self.exchange:
            raise InvalidInputError("exchange must be a non-empty string")
