from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional

EventKind = Literal["buy", "sell", "order_failed"]


@dataclass(frozen=True)
class TradeEvent:
    kind: EventKind
    symbol: str
    qty: int
    price: float
    detail: Optional[str] = None

    @property
    def total(self) -> float:
        return self.qty * self.price

    @property
    def subject(self) -> str:
        if self.kind == "buy":
            return f"Bought {self.qty} shares of {self.symbol}"
        if self.kind == "sell":
            return f"Sold {self.qty} shares of {self.symbol}"
        return f"Order failed for {self.symbol}"

    def summary(self) -> str:
        text = f"{self.subject} at ${self.price:.2f} (total ${self.total:.2f})"
        if self.detail:
            text += f" - {self.detail}"
        return text


class Notifier(ABC):
    """Trade alert channel."""

    @abstractmethod
    async def notify(self, event: TradeEvent) -> None:
        pass
