import logging
from datetime import datetime
from typing import Optional

from magicformula.core.config import Settings, settings as default_settings
from magicformula.core.exceptions import DataFetchError, LedgerError, OrderError
from magicformula.core.metrics import metrics
from magicformula.services.broker.base import BrokerGateway
from magicformula.services.cycle_base import (
    FAILED,
    SKIPPED,
    SUCCEEDED,
    BaseCycleService,
    CycleSummary,
    SymbolResult,
)
from magicformula.services.data_feed.base import DataFeed
from magicformula.services.ledger_service import LedgerService, TransactionRecord
from magicformula.services.notifications.base import Notifier, TradeEvent
from magicformula.strategy.allocator import CapitalAllocator, CashReservation
from magicformula.strategy.lifecycle import HoldingLot
from magicformula.strategy.ranking import MetricsRanker
from magicformula.strategy.validation import TradingParameters, is_valid_price, to_float

logger = logging.getLogger(__name__)


class BuyCycleService(BaseCycleService):
    """
    Buy the top-ranked batch.

    screen -> metrics -> rank -> top K -> account snapshot -> per-stock budget,
    then for each selected symbol in rank order: quote -> size -> order ->
    ledger -> notify.

    Sizing uses a single account snapshot. Unless ALLOCATOR_RESERVE_CASH is
    off, a running cash reservation caps every order to the snapshot cash not
    yet committed by earlier orders in the batch, so drifting prices cannot
    push the batch over the cash it started with.
    """

    job_type = "buy"

    def __init__(
        self,
        feed: DataFeed,
        broker: BrokerGateway,
        ledger: LedgerService,
        notifier: Notifier,
        config: Settings = default_settings,
        parameters: Optional[TradingParameters] = None,
        ranker: Optional[MetricsRanker] = None,
        allocator: Optional[CapitalAllocator] = None,
    ):
        super().__init__(broker, ledger, notifier, config=config, parameters=parameters)
        self.feed = feed
        self.ranker = ranker or MetricsRanker(exclude_zero=config.RANK_EXCLUDE_ZERO_FACTORS)
        self.allocator = allocator or CapitalAllocator()
        self.reserve_cash = config.ALLOCATOR_RESERVE_CASH

    async def _execute(self, summary: CycleSummary, params: TradingParameters, now: datetime) -> None:
        logger.info(
            "Fetching %s stocks with market cap > $%.2fM...",
            params.exchange,
            params.min_market_cap / 1e6,
        )
        try:
            symbols = await self._bounded(
                self.feed.screen(params.exchange, params.min_market_cap), DataFetchError, "stock screen"
            )
        except DataFetchError as e:
            summary.abort(f"stock screen failed: {e}")
            return
        logger.info("Fetched %s symbols.", len(symbols))
        if not symbols:
            summary.message = "no symbols to process"
            return

        # the feed bounds each symbol; the whole fetch is allowed to run long
        try:
            stock_metrics = await self.feed.fetch_metrics(symbols)
        except DataFetchError as e:
            summary.abort(f"metrics fetch failed: {e}")
            return
        if not stock_metrics:
            summary.message = "no financial metrics available"
            return

        ranked = self.ranker.rank(stock_metrics)
        top = ranked[:params.batch_size]
        logger.info("Top %s stocks: %s", params.batch_size, ", ".join(m.symbol for m in top))
        if not top:
            summary.message = "no rankable symbols"
            return

        try:
            account = await self._bounded(self.broker.get_account(), DataFetchError, "account fetch")
        except DataFetchError as e:
            summary.abort(f"unable to retrieve account information: {e}")
            return

        budget = self.allocator.budget(account, params.batch_size, params.max_investment_percent)
        logger.info(
            "Portfolio value $%.2f, available cash $%.2f, per-stock budget $%.2f (theoretical $%.2f)",
            account.portfolio_value,
            account.cash,
            budget.effective_per_stock,
            budget.theoretical_per_stock,
        )
        if budget.cash_constrained:
            logger.info(
                "Adjusted investment per stock based on available cash: $%.2f",
                budget.cash_constrained_per_stock,
            )

        reservation = CashReservation(max(account.cash, 0.0)) if self.reserve_cash else None
        for metric in top:
            result = await self._buy_symbol(metric.symbol, budget.effective_per_stock, reservation, now)
            summary.add(result)

    async def _buy_symbol(
        self,
        symbol: str,
        budget_per_stock: float,
        reservation: Optional[CashReservation],
        now: datetime,
    ) -> SymbolResult:
        try:
            price = await self._bounded(self.feed.fetch_quote(symbol), DataFetchError, "quote", symbol)
        except DataFetchError as e:
            logger.warning("Error processing %s: %s", symbol, e)
            return SymbolResult(symbol, FAILED, f"quote unavailable: {e}")

        if not is_valid_price(price):
            logger.info("Invalid price for %s (%r). Skipping...", symbol, price)
            metrics.order_skipped(symbol, "invalid price")
            return SymbolResult(symbol, SKIPPED, "invalid price")
        price = to_float(price)

        qty = self.allocator.quantity_for(budget_per_stock, price)
        if qty <= 0:
            logger.info("Calculated quantity for %s is less than or equal to zero. Skipping...", symbol)
            metrics.order_skipped(symbol, "zero quantity")
            return SymbolResult(symbol, SKIPPED, "zero quantity", price=price)

        if reservation is not None:
            capped = reservation.cap(qty, price)
            if capped < qty:
                logger.info(
                    "Capping %s from %s to %s shares: $%.2f of reserved cash left",
                    symbol,
                    qty,
                    capped,
                    reservation.remaining,
                )
            qty = capped
            if qty <= 0:
                metrics.order_skipped(symbol, "cash exhausted")
                return SymbolResult(symbol, SKIPPED, "cash exhausted", price=price)

        metrics.order_sizing(symbol, budget_per_stock, price, qty)
        logger.info("Placing order for %s shares of %s at $%.2f each.", qty, symbol, price)

        try:
            confirmation = await self._bounded(
                self.broker.submit_order(symbol, qty, "buy", reference_price=price),
                OrderError,
                "buy order",
                symbol,
            )
        except OrderError as e:
            logger.error("Failed to place buy order for %s: %s", symbol, e)
            metrics.order_failed(symbol, "buy", str(e))
            await self._notify(TradeEvent("order_failed", symbol, qty, price, detail=str(e)))
            return SymbolResult(symbol, FAILED, f"order rejected: {e}", qty=qty, price=price)

        fill_price = confirmation.price if is_valid_price(confirmation.price) else price
        if reservation is not None:
            reservation.commit(confirmation.qty, fill_price)
        metrics.order_created(symbol, "buy", confirmation.qty, confirmation.qty * fill_price)
        logger.info("Successfully placed buy order for %s: %s", symbol, confirmation.order_id)

        record = TransactionRecord(
            symbol=symbol,
            action="buy",
            quantity=confirmation.qty,
            price=fill_price,
            timestamp=now,
            broker_order_id=confirmation.order_id,
        )
        lot = HoldingLot(
            symbol=symbol,
            quantity=confirmation.qty,
            acquisition_date=now,
            acquisition_price=fill_price,
        )
        try:
            await self._write_ledger(lambda: self.ledger.record_purchase(record, lot), symbol)
        except LedgerError as e:
            logger.error("Buy order %s for %s placed but not recorded: %s", confirmation.order_id, symbol, e)
            await self._notify(
                TradeEvent(
                    "order_failed",
                    symbol,
                    confirmation.qty,
                    fill_price,
                    detail=f"order {confirmation.order_id} executed but ledger write failed: {e}",
                )
            )
            return SymbolResult(symbol, FAILED, f"ledger write failed: {e}", qty=confirmation.qty, price=fill_price)

        logger.info("Recorded purchase of %s shares of %s on %s", confirmation.qty, symbol, now.isoformat())
        await self._notify(TradeEvent("buy", symbol, confirmation.qty, fill_price))
        return SymbolResult(symbol, SUCCEEDED, qty=confirmation.qty, price=fill_price)
