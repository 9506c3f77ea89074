import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Optional

from magicformula.core.config import Settings, settings as default_settings
from magicformula.core.exceptions import DataFetchError, LedgerError, OrderError, ValidationError
from magicformula.core.metrics import metrics
from magicformula.services.broker.base import BrokerGateway, BrokerPosition
from magicformula.services.cycle_base import (
    FAILED,
    HELD,
    SKIPPED,
    SUCCEEDED,
    BaseCycleService,
    CycleSummary,
    SymbolResult,
)
from magicformula.services.ledger_service import LedgerService, TransactionRecord
from magicformula.services.notifications.base import Notifier, TradeEvent
from magicformula.strategy.lifecycle import PositionLifecycleManager
from magicformula.strategy.validation import TradingParameters, is_valid_price, to_float

logger = logging.getLogger(__name__)


class SellCycleService(BaseCycleService):
    """
    Close lots that have aged out.

    For each open broker position the earliest active ledger lot is evaluated;
    a sell decision liquidates that lot's quantity (capped at the shares the
    broker actually holds) and marks only that lot sold. Lots already sold are
    never looked up again, so a decision fires at most once per lot.
    """

    job_type = "sell"

    def __init__(
        self,
        broker: BrokerGateway,
        ledger: LedgerService,
        notifier: Notifier,
        config: Settings = default_settings,
        parameters: Optional[TradingParameters] = None,
        manager: Optional[PositionLifecycleManager] = None,
    ):
        super().__init__(broker, ledger, notifier, config=config, parameters=parameters)
        self.manager = manager or PositionLifecycleManager()

    async def _execute(self, summary: CycleSummary, params: TradingParameters, now: datetime) -> None:
        try:
            positions = await self._bounded(self.broker.get_positions(), DataFetchError, "positions fetch")
        except DataFetchError as e:
            summary.abort(f"error fetching positions: {e}")
            return

        if not positions:
            summary.message = "no open positions found"
            return

        for position in positions:
            summary.add(await self._process_position(position, params, now))

    async def _process_position(
        self,
        position: BrokerPosition,
        params: TradingParameters,
        now: datetime,
    ) -> SymbolResult:
        symbol = position.symbol
        try:
            lot = await self._bounded(
                self.ledger.earliest_active_holding(symbol), LedgerError, "holding lookup", symbol
            )
        except LedgerError as e:
            logger.error("Error fetching acquisition date for %s from database: %s", symbol, e)
            return SymbolResult(symbol, FAILED, f"holding lookup failed: {e}")

        if lot is None:
            logger.info("Acquisition date for %s not found in database. Skipping...", symbol)
            return SymbolResult(symbol, SKIPPED, "no active holding")

        if to_float(lot.acquisition_price) is None:
            entry_price = to_float(position.avg_entry_price)
            if entry_price is None:
                logger.info("No acquisition or entry price for %s. Skipping...", symbol)
                return SymbolResult(symbol, SKIPPED, "no reference price")
            lot = replace(lot, acquisition_price=entry_price)

        try:
            decision = self.manager.evaluate(
                lot,
                position.current_price,
                now,
                params.unprofitable_threshold_days,
                params.profitable_threshold_days,
            )
        except ValidationError as e:
            logger.info("Skipping %s: %s", symbol, e)
            metrics.order_skipped(symbol, "invalid price")
            return SymbolResult(symbol, SKIPPED, str(e))

        if not decision.sell:
            logger.info(
                "Position %s does not meet sell criteria (Holding Duration: %s days, Profitable: %s).",
                symbol,
                decision.holding_days,
                decision.is_profitable,
            )
            return SymbolResult(symbol, HELD, decision.reason)

        held_qty = math.floor(position.qty) if position.qty and position.qty > 0 else 0
        qty = min(lot.quantity, held_qty)
        if qty <= 0:
            logger.warning("Broker holds no shares of %s; lot %s left active", symbol, lot.id)
            metrics.order_skipped(symbol, "no shares at broker")
            return SymbolResult(symbol, SKIPPED, "no shares held at broker")
        if qty < lot.quantity:
            logger.warning(
                "Broker holds %s shares of %s but lot %s has %s; selling %s",
                held_qty,
                symbol,
                lot.id,
                lot.quantity,
                qty,
            )

        logger.info("Position %s (%s) meets sell criteria. Preparing to sell...", symbol, decision.reason)
        price = to_float(position.current_price)
        try:
            confirmation = await self._bounded(
                self.broker.submit_order(symbol, qty, "sell", reference_price=price),
                OrderError,
                "sell order",
                symbol,
            )
        except OrderError as e:
            logger.error("Failed to place sell order for %s: %s", symbol, e)
            metrics.order_failed(symbol, "sell", str(e))
            await self._notify(TradeEvent("order_failed", symbol, qty, price, detail=str(e)))
            return SymbolResult(symbol, FAILED, f"order rejected: {e}", qty=qty, price=price)

        fill_price = confirmation.price if is_valid_price(confirmation.price) else price
        metrics.order_created(symbol, "sell", confirmation.qty, confirmation.qty * fill_price)
        logger.info("Successfully placed sell order for %s: %s", symbol, confirmation.order_id)

        record = TransactionRecord(
            symbol=symbol,
            action="sell",
            quantity=confirmation.qty,
            price=fill_price,
            timestamp=now,
            broker_order_id=confirmation.order_id,
        )
        try:
            changed = await self._write_ledger(lambda: self.ledger.record_sale(record, lot.id), symbol)
        except LedgerError as e:
            logger.error("Sell order %s for %s placed but not recorded: %s", confirmation.order_id, symbol, e)
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

        if changed > 0:
            logger.info("Updated holding status for %s to 'sold' in database.", symbol)
        else:
            logger.warning("No active holdings found for %s to update in database.", symbol)

        status = "Profitable" if decision.is_profitable else "Unprofitable"
        await self._notify(TradeEvent("sell", symbol, confirmation.qty, fill_price, detail=status))
        return SymbolResult(symbol, SUCCEEDED, decision.reason, qty=confirmation.qty, price=fill_price)
