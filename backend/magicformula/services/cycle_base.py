import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Type, TypeVar

from magicformula.core.config import Settings, settings as default_settings
from magicformula.core.exceptions import (
    CycleAlreadyRunningError,
    InvalidInputError,
    LedgerError,
    TradingError,
)
from magicformula.core.metrics import metrics
from magicformula.services.broker.base import BrokerGateway
from magicformula.services.ledger_service import LedgerService
from magicformula.services.notifications.base import Notifier, TradeEvent
from magicformula.strategy.validation import TradingParameters, as_naive_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"
HELD = "held"


@dataclass
class SymbolResult:
    symbol: str
    outcome: str  # succeeded | skipped | failed | held
    reason: str = ""
    qty: int = 0
    price: Optional[float] = None


@dataclass
class CycleSummary:
    job: str
    status: str = "completed"  # completed | aborted | duplicate | cancelled
    message: str = ""
    results: List[SymbolResult] = field(default_factory=list)

    def add(self, result: SymbolResult) -> SymbolResult:
        self.results.append(result)
        return result

    def abort(self, message: str) -> None:
        self.status = "aborted"
        self.message = message

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return self._count(SUCCEEDED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    @property
    def held(self) -> int:
        return self._count(HELD)

    def one_line(self) -> str:
        line = (
            f"{self.job} cycle {self.status}: attempted={self.attempted} succeeded={self.succeeded} "
            f"skipped={self.skipped} failed={self.failed} held={self.held}"
        )
        if self.message:
            line += f" ({self.message})"
        return line


class BaseCycleService(ABC):
    """
    Shared run loop for the buy and sell cycles.

    Wraps a cycle in the run-level lock, bounds collaborator I/O with a
    timeout, retries ledger writes and always ends with a one-line summary.
    Symbols are processed one at a time; a symbol's failure is recorded in the
    summary and the loop moves on.
    """

    job_type: str = ""

    def __init__(
        self,
        broker: BrokerGateway,
        ledger: LedgerService,
        notifier: Notifier,
        config: Settings = default_settings,
        parameters: Optional[TradingParameters] = None,
    ):
        self.broker = broker
        self.ledger = ledger
        self.notifier = notifier
        self.config = config
        self.parameters = parameters
        self.io_timeout = config.IO_TIMEOUT_SEC
        self.ledger_retries = max(1, config.LEDGER_WRITE_RETRIES)
        self.enforce_run_lock = config.ENFORCE_RUN_LOCK

    async def run(self, now: Optional[datetime] = None) -> CycleSummary:
        now = now or datetime.now(timezone.utc)
        summary = CycleSummary(job=self.job_type)
        started = time.monotonic()
        logger.info("Starting %s cycle...", self.job_type)

        try:
            params = self.parameters or self.config.trading_parameters()
        except InvalidInputError as e:
            summary.abort(f"invalid configuration: {e}")
            return self._complete(summary, started)

        run_id = None
        if self.enforce_run_lock:
            try:
                run_id = await self._bounded(
                    self.ledger.begin_cycle(self.job_type, as_naive_utc(now).date()),
                    LedgerError,
                    "run lock",
                )
            except CycleAlreadyRunningError as e:
                summary.status = "duplicate"
                summary.message = str(e)
                return self._complete(summary, started)
            except LedgerError as e:
                summary.abort(f"could not acquire run lock: {e}")
                return self._complete(summary, started)

        try:
            await self._execute(summary, params, now)
        except InvalidInputError as e:
            summary.abort(f"invalid input: {e}")
        except asyncio.CancelledError:
            # Symbols confirmed so far stay committed
            summary.status = "cancelled"
            await self._close_run(run_id, summary)
            self._complete(summary, started)
            raise

        await self._close_run(run_id, summary)
        return self._complete(summary, started)

    @abstractmethod
    async def _execute(self, summary: CycleSummary, params: TradingParameters, now: datetime) -> None:
        """Run the cycle body, appending one SymbolResult per processed symbol."""
        pass

    async def _bounded(
        self,
        awaitable: Awaitable[T],
        error_cls: Type[TradingError],
        what: str,
        symbol: Optional[str] = None,
    ) -> T:
        """Await with the I/O timeout; expiry becomes a recoverable error_cls."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.io_timeout)
        except asyncio.TimeoutError as e:
            raise error_cls(f"{what} timed out after {self.io_timeout}s", symbol=symbol) from e

    async def _write_ledger(self, write: Callable[[], Awaitable[T]], symbol: str) -> T:
        """
        Retry an atomic, order-id keyed ledger write.

        The order has already executed at this point, so the write is retried
        rather than dropped; the final failure is raised as LedgerError.
        """
        last_error: Optional[LedgerError] = None
        for attempt in range(1, self.ledger_retries + 1):
            try:
                return await self._bounded(write(), LedgerError, "ledger write", symbol)
            except LedgerError as e:
                last_error = e
                logger.warning(
                    "Ledger write for %s failed (attempt %s/%s): %s",
                    symbol,
                    attempt,
                    self.ledger_retries,
                    e,
                )
        raise last_error

    async def _notify(self, event: TradeEvent) -> None:
        try:
            await asyncio.wait_for(self.notifier.notify(event), timeout=self.io_timeout)
        except Exception as e:
            logger.error("Error sending notification for %s: %s", event.symbol, e)

    async def _close_run(self, run_id: Optional[int], summary: CycleSummary) -> None:
        if run_id is None:
            return
        try:
            await self._bounded(
                self.ledger.finish_cycle(
                    run_id,
                    summary.status,
                    attempted=summary.attempted,
                    succeeded=summary.succeeded,
                    skipped=summary.skipped,
                    failed=summary.failed,
                ),
                LedgerError,
                "run close",
            )
        except LedgerError as e:
            logger.error("Failed to close %s cycle run %s: %s", self.job_type, run_id, e)

    def _complete(self, summary: CycleSummary, started: float) -> CycleSummary:
        metrics.cycle_completed(
            job=self.job_type,
            attempted=summary.attempted,
            succeeded=summary.succeeded,
            skipped=summary.skipped,
            failed=summary.failed,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        logger.info(summary.one_line())
        return summary
