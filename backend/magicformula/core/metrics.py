"""
Metrics emission system for observability.

Provides structured metrics for:
- Ranking passes (universe size vs. rankable entries)
- Order sizing decisions and skips
- Exit rule evaluations
- Cycle completion counts

Metrics are emitted to:
1. Python logging (immediate visibility)
2. In-memory buffer (summary for the run log)
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "rank", "order", "exit", "pipeline"
    event_type: str        # "computed", "sizing", "skipped", ...
    symbol: Optional[str]
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "symbol": self.symbol,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """Emit structured metrics to the log and an in-memory buffer."""

    # Category constants
    CATEGORY_RANK = "rank"
    CATEGORY_ORDER = "order"
    CATEGORY_EXIT = "exit"
    CATEGORY_PIPELINE = "pipeline"

    def __init__(self, buffer_size: int = 1000):
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []
        self._enabled = True

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Disable metrics emission (for testing)."""
        self._enabled = False

    def emit(
        self,
        category: str,
        event_type: str,
        value: float,
        symbol: str = None,
        metadata: dict = None
    ) -> Optional[MetricEvent]:
        """
        Emit a metric event.

        Args:
            category: Event category (rank, order, exit, pipeline)
            event_type: Specific event type within category
            value: Numeric value (1.0/0.0 for boolean, actual value for numeric)
            symbol: Optional instrument symbol
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent, or None when disabled
        """
        if not self._enabled:
            return None

        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            symbol=symbol,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.debug(
            f"METRIC [{category}/{event_type}] "
            f"symbol={symbol} value={value}{meta_str}"
        )

        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]

        return event

    # =========================================================================
    # Convenience methods for common metrics
    # =========================================================================

    def ranking_computed(self, input_count: int, ranked_count: int) -> MetricEvent:
        return self.emit(
            self.CATEGORY_RANK, "computed", ranked_count,
            metadata={"input_count": input_count, "dropped": input_count - ranked_count}
        )

    def order_sizing(self, symbol: str, budget: float, price: float,
                     qty: int) -> MetricEvent:
        """Record order sizing decision."""
        return self.emit(
            self.CATEGORY_ORDER, "sizing", qty,
            symbol=symbol,
            metadata={
                "budget": round(budget, 2),
                "price": price,
                "notional": round(qty * price, 2)
            }
        )

    def order_skipped(self, symbol: str, reason: str) -> MetricEvent:
        """Record skipped order."""
        return self.emit(
            self.CATEGORY_ORDER, "skipped", 0.0,
            symbol=symbol,
            metadata={"reason": reason}
        )

    def order_created(self, symbol: str, side: str, qty: float,
                      notional: float) -> MetricEvent:
        """Record order creation."""
        return self.emit(
            self.CATEGORY_ORDER, "created", notional,
            symbol=symbol,
            metadata={"side": side, "qty": qty}
        )

    def order_failed(self, symbol: str, side: str, error: str) -> MetricEvent:
        return self.emit(
            self.CATEGORY_ORDER, "failed", 1.0,
            symbol=symbol,
            metadata={"side": side, "error": error}
        )

    def exit_evaluated(self, symbol: str, sell: bool, holding_days: int,
                       is_profitable: bool) -> MetricEvent:
        return self.emit(
            self.CATEGORY_EXIT, "evaluated", 1.0 if sell else 0.0,
            symbol=symbol,
            metadata={"holding_days": holding_days, "is_profitable": is_profitable}
        )

    def cycle_completed(self, job: str, attempted: int, succeeded: int,
                        skipped: int, failed: int, duration_ms: float) -> MetricEvent:
        """Record cycle completion."""
        return self.emit(
            self.CATEGORY_PIPELINE, "cycle_completed", attempted,
            metadata={
                "job": job,
                "succeeded": succeeded,
                "skipped": skipped,
                "failed": failed,
                "duration_ms": round(duration_ms, 2)
            }
        )

    # =========================================================================
    # Aggregation methods
    # =========================================================================

    def get_buffer(self) -> List[MetricEvent]:
        return list(self._buffer)

    def get_summary(self, hours: int = 24) -> dict:
        """
        Get aggregated summary of recent metrics.

        Args:
            hours: How many hours of data to include

        Returns:
            Dictionary with aggregated metrics
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = [e for e in self._buffer if e.timestamp >= cutoff]

        by_category: Dict[str, int] = {}
        by_event: Dict[str, int] = {}
        sells_triggered = 0

        for event in recent:
            by_category[event.category] = by_category.get(event.category, 0) + 1
            key = f"{event.category}/{event.event_type}"
            by_event[key] = by_event.get(key, 0) + 1
            if key == "exit/evaluated" and event.value == 1.0:
                sells_triggered += 1

        return {
            "period_hours": hours,
            "total_events": len(recent),
            "by_category": by_category,
            "by_event": by_event,
            "orders_created": by_event.get("order/created", 0),
            "orders_skipped": by_event.get("order/skipped", 0),
            "orders_failed": by_event.get("order/failed", 0),
            "sells_triggered": sells_triggered,
        }

    def clear_buffer(self) -> int:
        """Clear buffer and return count of cleared events."""
        count = len(self._buffer)
        self._buffer = []
        return count


# Global singleton instance
metrics = MetricsEmitter()
