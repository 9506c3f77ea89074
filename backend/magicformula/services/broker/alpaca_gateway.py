import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide, OrderStatus, TimeInForce
from alpaca.trading.requests import MarketOrderRequest

from magicformula.core.config import settings
from magicformula.core.exceptions import DataFetchError, OrderError
from magicformula.services.broker.base import BrokerGateway, BrokerPosition, OrderConfirmation
from magicformula.strategy.allocator import AccountSnapshot
from magicformula.strategy.validation import to_float

logger = logging.getLogger(__name__)

TERMINAL_FAILURE_STATUSES = {
    OrderStatus.CANCELED,
    OrderStatus.EXPIRED,
    OrderStatus.REJECTED,
}


class AlpacaGateway(BrokerGateway):
    """
    Alpaca brokerage via the alpaca-py TradingClient (paper or live).

    The SDK is synchronous; every call runs in a worker thread so the cycle's
    timeouts and cancellation still apply.
    """

    def __init__(
        self,
        client: Optional[TradingClient] = None,
        fill_timeout_sec: Optional[float] = None,
        poll_interval_sec: Optional[float] = None,
    ):
        self.client = client or TradingClient(
            api_key=settings.ALPACA_API_KEY,
            secret_key=settings.ALPACA_SECRET_KEY,
            paper=(settings.BROKER_MODE == "paper"),
            url_override=_normalize_base_url(settings.ALPACA_BASE_URL),
        )
        self.fill_timeout_sec = settings.ORDER_FILL_TIMEOUT_SEC if fill_timeout_sec is None else fill_timeout_sec
        self.poll_interval_sec = settings.ORDER_FILL_POLL_SEC if poll_interval_sec is None else poll_interval_sec

    async def get_account(self) -> AccountSnapshot:
        try:
            account = await asyncio.to_thread(self.client.get_account)
        except Exception as e:
            raise DataFetchError(f"Error fetching Alpaca account info: {e}") from e

        cash = to_float(account.cash)
        portfolio_value = to_float(account.portfolio_value)
        if cash is None or portfolio_value is None:
            raise DataFetchError(
                f"Alpaca account returned unusable figures: cash={account.cash!r}, "
                f"portfolio_value={account.portfolio_value!r}"
            )
        return AccountSnapshot(cash=cash, portfolio_value=portfolio_value)

    async def get_positions(self) -> List[BrokerPosition]:
        try:
            positions = await asyncio.to_thread(self.client.get_all_positions)
        except Exception as e:
            raise DataFetchError(f"Error fetching positions: {e}") from e

        return [
            BrokerPosition(
                symbol=str(position.symbol),
                qty=to_float(position.qty) or 0.0,
                avg_entry_price=to_float(position.avg_entry_price),
                current_price=to_float(position.current_price),
            )
            for position in positions
        ]

    async def submit_order(
        self,
        symbol: str,
        qty: int,
        side: str,
        reference_price: Optional[float] = None,
    ) -> OrderConfirmation:
        if side not in ("buy", "sell"):
            raise OrderError(f"Unknown order side {side!r}", symbol=symbol)

        request = MarketOrderRequest(
            symbol=symbol,
            qty=qty,
            side=OrderSide.BUY if side == "buy" else OrderSide.SELL,
            time_in_force=TimeInForce.DAY,
        )
        submitted_at = datetime.now(timezone.utc)
        try:
            order = await asyncio.to_thread(self.client.submit_order, request)
        except Exception as e:
            raise OrderError(f"Failed to place {side} order for {symbol}: {e}", symbol=symbol) from e

        broker_order_id = str(order.id)
        logger.info("Submitted %s order for %s x%s: %s", side, symbol, qty, broker_order_id)

        status, fill_price = await self._wait_for_fill(broker_order_id, symbol, order)
        price = fill_price or reference_price
        if price is None:
            logger.warning("No fill or reference price for order %s (%s)", broker_order_id, symbol)
            price = 0.0

        return OrderConfirmation(
            order_id=broker_order_id,
            symbol=symbol,
            side=side,
            qty=qty,
            price=price,
            status=_enum_value(status),
            submitted_at=submitted_at,
        )

    async def _wait_for_fill(self, broker_order_id: str, symbol: str, order: Any) -> tuple[Any, Optional[float]]:
        """
        Poll Alpaca for order fill status.

        Returns (status, fill_price); fill_price is None if the order has not
        filled within the timeout. Raises OrderError if the order was rejected,
        cancelled or expired.
        """
        start_time = time.monotonic()
        current = order

        while True:
            status = getattr(current, "status", None)
            if status == OrderStatus.FILLED:
                return status, to_float(current.filled_avg_price)
            if status in TERMINAL_FAILURE_STATUSES:
                raise OrderError(f"Order {broker_order_id} for {symbol} {_enum_value(status)}", symbol=symbol)

            if (time.monotonic() - start_time) >= self.fill_timeout_sec:
                logger.warning(
                    "Order %s fill timeout after %ss (status %s), using reference price",
                    broker_order_id,
                    self.fill_timeout_sec,
                    _enum_value(status),
                )
                return status, to_float(getattr(current, "filled_avg_price", None))

            await asyncio.sleep(self.poll_interval_sec)
            try:
                current = await asyncio.to_thread(self.client.get_order_by_id, broker_order_id)
            except Exception as e:
                # The order is already placed; a polling failure must not look like a rejection
                logger.warning("Failed to poll order %s: %s", broker_order_id, e)
                return status, None


def _normalize_base_url(base_url: str) -> str:
    normalized = base_url.rstrip("/")
    if normalized.endswith("/v2"):
        return normalized[:-3]
    return normalized


def _enum_value(value: Any) -> str:
    if value is None:
        return "unknown"
    return str(getattr(value, "value", value))
