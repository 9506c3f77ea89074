import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from magicformula.core.database import AsyncSessionLocal
from magicformula.core.exceptions import CycleAlreadyRunningError, LedgerError, ValidationError
from magicformula.models.base import utcnow
from magicformula.models.cycle_run import CycleRun
from magicformula.models.holding import Holding
from magicformula.models.transaction import Transaction
from magicformula.strategy.lifecycle import HoldingLot, HoldingStatus
from magicformula.strategy.validation import as_naive_utc, is_valid_price, to_float

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionRecord:
    symbol: str
    action: str  # buy | sell
    quantity: int
    price: float
    timestamp: datetime
    broker_order_id: Optional[str] = None

    def __post_init__(self):
        if self.action not in ("buy", "sell"):
            raise ValidationError(f"Unknown transaction action {self.action!r}", symbol=self.symbol)
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValidationError(f"Invalid quantity {self.quantity!r}", symbol=self.symbol)
        if not is_valid_price(self.price):
            raise ValidationError(f"Invalid price {self.price!r}", symbol=self.symbol)

    @property
    def total_amount(self) -> float:
        return self.quantity * float(self.price)


class LedgerService:
    """
    Holdings and transactions persistence.

    Holdings are append-only acquisition lots whose status moves active -> sold;
    transactions are written once per order confirmation. The composite
    record_purchase / record_sale writes are atomic and keyed by broker order id,
    so retrying them after a failure never duplicates rows.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Primitive operations
    # ------------------------------------------------------------------

    async def record_transaction(self, record: TransactionRecord) -> int:
        async with self.session_factory() as session:
            try:
                row = self._transaction_row(record)
                session.add(row)
                await session.commit()
                return row.id
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to record {record.action} of {record.symbol}: {exc}", record.symbol) from exc

    async def insert_holding(self, lot: HoldingLot, broker_order_id: Optional[str] = None) -> HoldingLot:
        async with self.session_factory() as session:
            try:
                row = self._holding_row(lot, broker_order_id)
                session.add(row)
                await session.commit()
                return _to_lot(row)
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to insert holding for {lot.symbol}: {exc}", lot.symbol) from exc

    async def earliest_active_holding(self, symbol: str) -> Optional[HoldingLot]:
        stmt = (
            select(Holding)
            .where(Holding.symbol == symbol, Holding.status == HoldingStatus.ACTIVE.value)
            .order_by(Holding.acquisition_date.asc(), Holding.id.asc())
            .limit(1)
        )
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise LedgerError(f"Failed to look up holdings for {symbol}: {exc}", symbol) from exc
            row = result.scalar_one_or_none()
            return _to_lot(row) if row else None

    async def mark_sold(self, symbol: str, holding_id: Optional[int] = None) -> int:
        """
        Flip active holdings of a symbol to sold and return how many changed.

        Without holding_id every active lot of the symbol is closed; with it,
        only that lot.
        """
        async with self.session_factory() as session:
            try:
                result = await session.execute(self._mark_sold_stmt(symbol, holding_id))
                await session.commit()
                return result.rowcount
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to mark {symbol} sold: {exc}", symbol) from exc

    async def active_holdings(self, symbol: Optional[str] = None) -> list[HoldingLot]:
        stmt = select(Holding).where(Holding.status == HoldingStatus.ACTIVE.value)
        if symbol:
            stmt = stmt.where(Holding.symbol == symbol)
        stmt = stmt.order_by(Holding.acquisition_date.asc(), Holding.id.asc())
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise LedgerError(f"Failed to list active holdings: {exc}", symbol) from exc
            return [_to_lot(row) for row in result.scalars().all()]

    async def list_transactions(self, symbol: Optional[str] = None, limit: int = 100) -> list[TransactionRecord]:
        stmt = select(Transaction)
        if symbol:
            stmt = stmt.where(Transaction.symbol == symbol)
        stmt = stmt.order_by(Transaction.timestamp.desc(), Transaction.id.desc()).limit(limit)
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt)
            except SQLAlchemyError as exc:
                raise LedgerError(f"Failed to list transactions: {exc}", symbol) from exc
            return [
                TransactionRecord(
                    symbol=row.symbol,
                    action=row.action,
                    quantity=int(row.quantity),
                    price=float(row.price),
                    timestamp=row.timestamp,
                    broker_order_id=row.broker_order_id,
                )
                for row in result.scalars().all()
            ]

    # ------------------------------------------------------------------
    # Atomic writes used by the cycles
    # ------------------------------------------------------------------

    async def record_purchase(self, record: TransactionRecord, lot: HoldingLot) -> HoldingLot:
        """Write the buy transaction and its new active lot in one DB transaction."""
        async with self.session_factory() as session:
            try:
                if record.broker_order_id:
                    existing = await session.execute(
                        select(Holding).where(Holding.broker_order_id == record.broker_order_id)
                    )
                    row = existing.scalar_one_or_none()
                    if row is not None:
                        logger.info("Purchase for order %s already recorded", record.broker_order_id)
                        return _to_lot(row)

                session.add(self._transaction_row(record))
                row = self._holding_row(lot, record.broker_order_id)
                session.add(row)
                await session.commit()
                return _to_lot(row)
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to record purchase of {record.symbol}: {exc}", record.symbol) from exc

    async def record_sale(self, record: TransactionRecord, holding_id: Optional[int] = None) -> int:
        """Write the sell transaction and close the sold lot(s) in one DB transaction."""
        async with self.session_factory() as session:
            try:
                if record.broker_order_id:
                    existing = await session.execute(
                        select(Transaction.id).where(Transaction.broker_order_id == record.broker_order_id)
                    )
                    if existing.scalar_one_or_none() is not None:
                        logger.info("Sale for order %s already recorded", record.broker_order_id)
                        return 0

                session.add(self._transaction_row(record))
                result = await session.execute(self._mark_sold_stmt(record.symbol, holding_id))
                await session.commit()
                return result.rowcount
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to record sale of {record.symbol}: {exc}", record.symbol) from exc

    # ------------------------------------------------------------------
    # Run lock
    # ------------------------------------------------------------------

    async def begin_cycle(self, job_type: str, run_date: date) -> int:
        """Claim the (job_type, run_date) slot; raises CycleAlreadyRunningError if taken."""
        async with self.session_factory() as session:
            run = CycleRun(job_type=job_type, run_date=run_date, status="running", started_at=utcnow())
            session.add(run)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise CycleAlreadyRunningError(
                    f"{job_type} cycle already started for {run_date.isoformat()}"
                ) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to register {job_type} cycle: {exc}") from exc
            return run.id

    async def finish_cycle(
        self,
        run_id: int,
        status: str,
        attempted: int = 0,
        succeeded: int = 0,
        skipped: int = 0,
        failed: int = 0,
    ) -> None:
        async with self.session_factory() as session:
            try:
                run = await session.get(CycleRun, run_id)
                if run is None:
                    logger.warning("Cycle run %s not found", run_id)
                    return
                run.status = status
                run.finished_at = utcnow()
                run.attempted = attempted
                run.succeeded = succeeded
                run.skipped = skipped
                run.failed = failed
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise LedgerError(f"Failed to close cycle run {run_id}: {exc}") from exc

    # ------------------------------------------------------------------

    def _mark_sold_stmt(self, symbol: str, holding_id: Optional[int]):
        stmt = update(Holding).where(
            Holding.symbol == symbol,
            Holding.status == HoldingStatus.ACTIVE.value,
        )
        if holding_id is not None:
            stmt = stmt.where(Holding.id == holding_id)
        return stmt.values(status=HoldingStatus.SOLD.value, updated_at=utcnow())

    def _transaction_row(self, record: TransactionRecord) -> Transaction:
        return Transaction(
            symbol=record.symbol,
            action=record.action,
            quantity=record.quantity,
            price=float(record.price),
            total_amount=record.total_amount,
            timestamp=as_naive_utc(record.timestamp),
            broker_order_id=record.broker_order_id,
        )

    def _holding_row(self, lot: HoldingLot, broker_order_id: Optional[str]) -> Holding:
        if isinstance(lot.quantity, bool) or not isinstance(lot.quantity, int) or lot.quantity <= 0:
            raise ValidationError(f"Invalid holding quantity {lot.quantity!r}", symbol=lot.symbol)
        return Holding(
            symbol=lot.symbol,
            quantity=lot.quantity,
            acquisition_date=as_naive_utc(lot.acquisition_date),
            acquisition_price=to_float(lot.acquisition_price),
            status=HoldingStatus(lot.status).value,
            broker_order_id=broker_order_id,
        )


def _to_lot(row: Holding) -> HoldingLot:
    return HoldingLot(
        id=row.id,
        symbol=row.symbol,
        quantity=int(row.quantity),
        acquisition_date=row.acquisition_date,
        acquisition_price=to_float(row.acquisition_price),
        status=HoldingStatus(row.status),
    )
